"""
PHC Budget Pipeline: Stage Reports
==================================
Every stage hands back a ``StageReport`` next to its data so operators can
audit how many facilities went in, how many were dropped by joins, and how
many were flagged as anomalous along the way.
"""

import logging
from dataclasses import dataclass, field
from typing import List

logger = logging.getLogger(__name__)


@dataclass
class StageReport:
    """Facility counts and remarks for one pipeline stage."""

    stage: str
    processed: int = 0
    dropped: int = 0
    anomalies: int = 0
    notes: List[str] = field(default_factory=list)

    def note(self, message: str) -> None:
        self.notes.append(message)

    def log(self) -> None:
        logger.info(
            "[%s] processed=%d dropped=%d anomalies=%d",
            self.stage,
            self.processed,
            self.dropped,
            self.anomalies,
        )
        for message in self.notes:
            logger.info("[%s] %s", self.stage, message)

    def summary_line(self) -> str:
        return (
            f"{self.stage:<24}{self.processed:>8}{self.dropped:>9}"
            f"{self.anomalies:>11}"
        )


def require_rows(frame, report: StageReport, cause: str):
    """Raise ``ValueError`` (with ``cause`` recorded) if ``frame`` is empty."""
    if len(frame) == 0:
        report.note(f"empty result: {cause}")
        report.log()
        raise ValueError(f"{report.stage} produced no facilities: {cause}")
    return frame
