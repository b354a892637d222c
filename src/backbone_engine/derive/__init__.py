from backbone_engine.derive.health import derive_health
from backbone_engine.derive.metrics import derive_metrics
from backbone_engine.derive.pattern_lift import (
    PatternLiftConfig,
    compute_all_pattern_lifts,
    compute_pattern_lift,
    compute_pattern_stats,
    validate_lift_bounds,
)
from backbone_engine.derive.runway import derive_runway
from backbone_engine.derive.trajectory import derive_trajectory, probability_of_hit

__all__ = [
    "derive_health",
    "derive_metrics",
    "PatternLiftConfig",
    "compute_all_pattern_lifts",
    "compute_pattern_lift",
    "compute_pattern_stats",
    "validate_lift_bounds",
    "derive_runway",
    "derive_trajectory",
    "probability_of_hit",
]
