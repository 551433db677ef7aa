"""
Shared result types for pipeline stages.

Every stage returns a dataclass derived from StageResult so the scheduler,
the CLI and the job ledger can report on it the same way.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List


class StageStatus(str, Enum):
    """Outcome of one stage run for one user."""
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"  # some records failed or the run was truncated
    SKIPPED = "skipped"                  # guard held, or configuration missing
    ERROR = "error"


@dataclass
class StageResult:
    status: StageStatus = StageStatus.SUCCESS
    errors: List[str] = field(default_factory=list)
    skip_reason: str = ""

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def finish(self, truncated: bool = False) -> None:
        """Settle the status from collected errors unless already skipped/errored."""
        if self.status in (StageStatus.SKIPPED, StageStatus.ERROR):
            return
        self.status = (
            StageStatus.PARTIAL_SUCCESS if (self.errors or truncated) else StageStatus.SUCCESS
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["errors"] = self.errors[:5]
        return data


def skipped(result_cls: type, reason: str) -> StageResult:
    """Build a result of `result_cls` marked as skipped."""
    return result_cls(status=StageStatus.SKIPPED, skip_reason=reason)
