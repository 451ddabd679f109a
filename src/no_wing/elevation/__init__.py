from no_wing.elevation.elevator import PermissionElevator
from no_wing.elevation.models import ElevationResult, PermissionPattern, PermissionRequest
from no_wing.elevation.patterns import PatternTable, load_pattern_table
from no_wing.elevation.requests import PermissionRequestStore
from no_wing.elevation.strategies import StrategyOutcome, StrategyRegistry

__all__ = [
    "ElevationResult",
    "PatternTable",
    "PermissionElevator",
    "PermissionPattern",
    "PermissionRequest",
    "PermissionRequestStore",
    "StrategyOutcome",
    "StrategyRegistry",
    "load_pattern_table",
]
