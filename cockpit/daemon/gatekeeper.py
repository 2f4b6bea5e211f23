"""Rule-based activity analysis: nudges and daily summaries.

Each heuristic is a pure function over the recent snapshot window that
returns at most one nudge. ``analyze()`` runs them in a fixed order, sorts
the results by priority (stable, highest first) and truncates to the daily
limit. Nothing is remembered between calls, so unchanged data yields the
same nudges every time.
"""

from datetime import date as date_type
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence

from loguru import logger

from .config import GatekeeperConfig
from .errors import StoreError
from .models import DailySummary, Nudge, NudgePriority, NudgeType, Snapshot, utcnow
from .store import ActivitySource


ANALYSIS_WINDOW = 50
CONTEXT_SWITCH_WINDOW = 10
CONTEXT_SWITCH_THRESHOLD = 5
BURST_WINDOW = 20
BURST_SPAN = timedelta(minutes=30)

# (snapshots newest-first, config, now) -> nudge or None
Check = Callable[[Sequence[Snapshot], GatekeeperConfig, datetime], Optional[Nudge]]


def check_focus_time(
    snapshots: Sequence[Snapshot], config: GatekeeperConfig, now: datetime
) -> Optional[Nudge]:
    """Suggest a break after too long in the same directory."""
    if not snapshots:
        return None

    newest, oldest = snapshots[0], snapshots[-1]
    if oldest.active_directory != newest.active_directory:
        return None

    if now - oldest.timestamp <= timedelta(minutes=config.max_focus_time_minutes):
        return None

    return Nudge(
        message=(
            f"You've been working in the same area for over "
            f"{config.max_focus_time_minutes} minutes. Consider taking a short break!"
        ),
        nudge_type=NudgeType.TAKE_BREAK,
        priority=NudgePriority.MEDIUM,
        timestamp=now,
    )


def check_context_switches(
    snapshots: Sequence[Snapshot], config: GatekeeperConfig, now: datetime
) -> Optional[Nudge]:
    """Flag frequent directory changes across the latest snapshots."""
    if not config.enable_context_switch_nudges:
        return None
    if len(snapshots) < CONTEXT_SWITCH_THRESHOLD:
        return None

    directories = {
        s.active_directory
        for s in snapshots[:CONTEXT_SWITCH_WINDOW]
        if s.active_directory is not None
    }
    if len(directories) < CONTEXT_SWITCH_THRESHOLD:
        return None

    return Nudge(
        message="You've switched context frequently. Consider focusing on one area.",
        nudge_type=NudgeType.CONTEXT_SWITCH,
        priority=NudgePriority.LOW,
        timestamp=now,
    )


def check_activity_level(
    snapshots: Sequence[Snapshot], config: GatekeeperConfig, now: datetime
) -> Optional[Nudge]:
    """Note bursts: many snapshots in a short span."""
    if len(snapshots) < BURST_WINDOW:
        return None

    span = snapshots[0].timestamp - snapshots[BURST_WINDOW - 1].timestamp
    if span >= BURST_SPAN:
        return None

    return Nudge(
        message="High activity detected! You're making great progress.",
        nudge_type=NudgeType.HIGH_ACTIVITY,
        priority=NudgePriority.LOW,
        timestamp=now,
    )


DEFAULT_CHECKS: Sequence[Check] = (
    check_focus_time,
    check_context_switches,
    check_activity_level,
)


def prioritize(nudges: Sequence[Nudge], limit: int) -> List[Nudge]:
    """Highest priority first; ties keep their order. Truncated to ``limit``."""
    ordered = sorted(nudges, key=lambda n: n.priority, reverse=True)
    return ordered[:max(0, limit)]


class Gatekeeper:
    """Derives nudges and summaries from store contents."""

    def __init__(
        self,
        source: ActivitySource,
        config: Optional[GatekeeperConfig] = None,
        checks: Sequence[Check] = DEFAULT_CHECKS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.source = source
        self.config = config or GatekeeperConfig()
        self.checks = tuple(checks)
        self.clock = clock

    def analyze(self) -> List[Nudge]:
        try:
            snapshots = self.source.get_recent_snapshots(ANALYSIS_WINDOW)
        except StoreError as e:
            logger.error(f"Could not read snapshots for analysis: {e}")
            snapshots = []

        now = self.clock()
        nudges = []
        for check in self.checks:
            nudge = check(snapshots, self.config, now)
            if nudge is not None:
                nudges.append(nudge)

        return prioritize(nudges, self.config.max_nudges_per_day)

    def daily_summary(self, date: datetime) -> DailySummary:
        """File-change counts for the UTC calendar day containing ``date``."""
        start = start_of_utc_day(date)
        end = start + timedelta(days=1)

        try:
            activity = self.source.get_activity_summary(start, end)
        except StoreError as e:
            logger.error(f"Could not summarize activity for {start.date()}: {e}")
            return DailySummary(date=date)

        return DailySummary(
            date=date,
            total_events=activity.total_events,
            files_modified=activity.files_modified,
            files_created=activity.files_created,
            most_active_directory=activity.most_active_directory,
        )


def start_of_utc_day(value) -> datetime:
    """Midnight UTC of the day containing ``value`` (naive values read as UTC)."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, date_type):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    raise TypeError(f"expected a date or datetime, got {type(value).__name__}")
