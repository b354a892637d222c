from backbone_engine.runtime.graph import GRAPH, TERMINAL_NODE_WHITELIST, depends_on, find_dead_ends, topo_sort, validate_graph
from backbone_engine.runtime.pipeline import RunConfig, compute, dedupe_actions, evaluate_company

__all__ = [
    "GRAPH",
    "TERMINAL_NODE_WHITELIST",
    "depends_on",
    "find_dead_ends",
    "topo_sort",
    "validate_graph",
    "RunConfig",
    "compute",
    "dedupe_actions",
    "evaluate_company",
]
