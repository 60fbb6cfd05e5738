"""Per-issue step outcomes collected during a scan pass."""
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class StepOutcome:
    """Result of one fail-open step (AI or alert) for one issue."""
    step: str  # ai_page, ai_issue, alert
    issue_id: Optional[int] = None
    ok: bool = True
    detail: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PipelineReport:
    """Everything a scan pass did after the engine returned."""
    scan_id: Optional[int] = None
    issue_ids: List[int] = field(default_factory=list)
    changes: List[tuple] = field(default_factory=list)  # (issue_id, issue_type, action)
    outcomes: List[StepOutcome] = field(default_factory=list)
    alerts_sent: int = 0
    rescan_scheduled: bool = False

    @property
    def failures(self) -> List[StepOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def record(self, outcome: StepOutcome):
        self.outcomes.append(outcome)
