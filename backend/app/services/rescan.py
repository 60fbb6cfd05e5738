"""Rescan scheduler - queues a confirmation scan for unconfirmed critical issues."""
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Iterable, List, Optional, Union

from ..config import settings
from ..models import Issue

logger = logging.getLogger(__name__)

ScheduleFn = Callable[[int, datetime], Union[None, Awaitable[None]]]


def unconfirmed_critical(issues: Iterable[Issue]) -> List[Issue]:
    """High severity issues seen once and not confirmed by AI."""
    return [
        issue for issue in issues
        if issue.is_high_severity
        and issue.occurrence_count == 1
        and not issue.ai_confirmed
    ]


class RescanScheduler:
    """Schedules at most one follow-up scan per page per pass."""

    def __init__(
        self,
        schedule: Optional[ScheduleFn] = None,
        delay_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._schedule = schedule
        self.delay = timedelta(minutes=delay_minutes or settings.rescan_delay_minutes)
        self._clock = clock

    async def maybe_schedule(self, page_id: int, issues: Iterable[Issue]) -> Optional[datetime]:
        """Schedule a rescan if any issue needs confirmation. Returns the run time."""
        pending = unconfirmed_critical(issues)
        if not pending:
            return None

        run_at = self._clock() + self.delay
        logger.info(
            f"Found {len(pending)} unconfirmed high severity issue(s) on page {page_id}. "
            f"Scheduling rescan at {run_at.isoformat()}"
        )
        if self._schedule is not None:
            result = self._schedule(page_id, run_at)
            if result is not None:
                await result
        return run_at
