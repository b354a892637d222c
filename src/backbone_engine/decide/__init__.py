from backbone_engine.decide.ranking import (
    RankingContext,
    compute_expected_net_impact,
    compute_rank_score,
    rank_actions,
    rank_actions_with_trace,
    validate_ranking,
    verify_determinism,
)
from backbone_engine.decide.weights import RankingWeights

__all__ = [
    "RankingContext",
    "RankingWeights",
    "compute_expected_net_impact",
    "compute_rank_score",
    "rank_actions",
    "rank_actions_with_trace",
    "validate_ranking",
    "verify_determinism",
]
