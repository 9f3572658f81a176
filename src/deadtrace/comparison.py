from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

from .models import ExecutedMethodSet, MethodInventory, RedundancyReport, SafetyTier, UnusedMethodRecord
from .normalizer import SignatureNormalizer

logger = logging.getLogger(__name__)

DEFAULT_SCENARIOS = ("default",)


class ComparisonEngine:
    """Set difference between declared methods and executed keys.

    Matching is by ``Type.Method`` only and ignores case, so every overload of
    a method counts as executed once any one of them is seen.
    """

    def __init__(self, normalizer: Optional[SignatureNormalizer] = None):
        self.normalizer = normalizer or SignatureNormalizer()

    def compare(
        self,
        inventory: MethodInventory,
        executed: Iterable[str],
        scenarios: Optional[Sequence[str]] = None,
    ) -> RedundancyReport:
        """
        Report every inventory method whose key never appears in ``executed``.

        Args:
            inventory: declared methods from the static pass
            executed: raw or canonical keys observed in traces
            scenarios: labels recorded on the report; ``["default"]`` when omitted
        """
        if inventory is None:
            raise ValueError("inventory is required")
        if executed is None:
            raise ValueError("executed is required")

        seen = ExecutedMethodSet(self.normalizer.normalize(key) for key in executed)
        report = RedundancyReport(
            analyzed_modules=list(inventory.by_module()),
            trace_scenarios=list(scenarios) if scenarios else list(DEFAULT_SCENARIOS),
        )
        skipped = 0
        for method in inventory:
            if method.safety_tier == SafetyTier.DO_NOT_REMOVE:
                skipped += 1
                continue
            if self.normalizer.normalize(method.key) not in seen:
                report.add_unused(UnusedMethodRecord(method))

        stats = report.statistics()
        logger.info(
            "%d of %d methods unused (high=%d, medium=%d, low=%d, never-remove skipped=%d)",
            stats.total, len(inventory), stats.high_confidence, stats.medium_confidence,
            stats.low_confidence, skipped,
        )
        return report
