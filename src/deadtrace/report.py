"""
JSON rendering of a redundancy report.

Only methods with a known source location are written; statistics still count
the rest. The layout is meant to be handed to a reviewer (human or model) who
opens each ``file:line`` and decides::

    {
      "highConfidence":   [{"file": ..., "line": ..., "method": ..., "dependencies": []}],
      "mediumConfidence": [...],
      "lowConfidence":    [...]
    }
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from .models import RedundancyReport, SafetyTier, UnusedMethodRecord

logger = logging.getLogger(__name__)


class ReportEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    file: str
    line: int
    method: str
    dependencies: List[str] = Field(default_factory=list)


class ReportDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    highConfidence: List[ReportEntry] = Field(default_factory=list)
    mediumConfidence: List[ReportEntry] = Field(default_factory=list)
    lowConfidence: List[ReportEntry] = Field(default_factory=list)


def _entries(unused: List[UnusedMethodRecord]) -> List[ReportEntry]:
    return [
        ReportEntry(file=u.file_path, line=u.line_number, method=u.method.method_name, dependencies=list(u.dependencies))
        for u in unused
        if u.file_path is not None and u.line_number is not None
    ]


class ReportGenerator:
    def __init__(self, min_tier: SafetyTier = SafetyTier.LOW, indent: int = 2):
        self.min_tier = min_tier
        self.indent = indent

    def build(self, report: RedundancyReport) -> ReportDocument:
        """Document of located entries at or above ``min_tier``, one array per tier."""
        if report is None:
            raise ValueError("report is required")
        selected = report.filtered(self.min_tier)
        return ReportDocument(
            highConfidence=_entries(selected.high_confidence),
            mediumConfidence=_entries(selected.medium_confidence),
            lowConfidence=_entries(selected.low_confidence),
        )

    def render(self, report: RedundancyReport) -> str:
        return self.build(report).model_dump_json(indent=self.indent)

    def generate(self, report: RedundancyReport, output_path: str | Path) -> Path:
        """Write the report as JSON, creating the parent directory if needed."""
        out = Path(output_path)
        logger.info("Generating JSON report to %s", out)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(self.render(report), encoding="utf-8")
        return out

