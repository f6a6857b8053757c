"""Rule engine applying translation rules to the canonical IR."""

from ci_translate.engine.engine import EngineResult, RuleEngine, check_matrix_capacity

__all__ = ["EngineResult", "RuleEngine", "check_matrix_capacity"]
