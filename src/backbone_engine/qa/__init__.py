from backbone_engine.qa.gate import InvariantGate, assert_gate_passed, gate_passed, summarize
from backbone_engine.qa.layering import LAYER_WHITELIST, LayeringAuditor

__all__ = ["InvariantGate", "assert_gate_passed", "gate_passed", "summarize", "LAYER_WHITELIST", "LayeringAuditor"]
