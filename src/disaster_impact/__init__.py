from .config import EngineConfig
from .engine import ImpactEngine
from .models import ImpactFilters, MostDamagingEventsParams

__all__ = [
    "EngineConfig",
    "ImpactEngine",
    "ImpactFilters",
    "MostDamagingEventsParams",
]
