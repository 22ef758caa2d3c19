"""Rule evaluation and suppression bookkeeping."""

from .evaluator import RuleEvaluator
from .suppression import FLEET_DEGRADED_KEY, SuppressionLedger, SuppressionStore

__all__ = ["RuleEvaluator", "SuppressionLedger", "SuppressionStore", "FLEET_DEGRADED_KEY"]
