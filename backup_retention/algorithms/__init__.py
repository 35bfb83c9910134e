from ..models import CleanupMode
from .base import CleanupAlgorithm
from .combined import CombinedAlgorithm
from .space_based import SpaceBasedAlgorithm
from .time_based import TimeBasedAlgorithm


ALGORITHM_REGISTRY: dict[CleanupMode, CleanupAlgorithm] = {
    CleanupMode.TIME: TimeBasedAlgorithm(),
    CleanupMode.SPACE: SpaceBasedAlgorithm(),
    CleanupMode.BOTH: CombinedAlgorithm(),
}


__all__ = [
    "CleanupAlgorithm",
    "TimeBasedAlgorithm",
    "SpaceBasedAlgorithm",
    "CombinedAlgorithm",
    "ALGORITHM_REGISTRY",
]
