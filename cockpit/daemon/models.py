"""Data models for the capture daemon."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from pathlib import Path
from typing import Optional

import ulid


def utcnow() -> datetime:
    """Current instant as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(ulid.ULID())


class FileEventType(str, Enum):
    """Kind of filesystem change, stored as lowercase text."""
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    # Part of the stored vocabulary; the watcher never produces it.
    RENAMED = "renamed"

    @classmethod
    def parse(cls, text: str) -> "FileEventType":
        """Map stored text back to a kind. Unknown text reads as MODIFIED."""
        try:
            return cls(text)
        except ValueError:
            return cls.MODIFIED


@dataclass(frozen=True)
class WatchEvent:
    """A transient notification that a path changed."""
    path: Path
    event_type: FileEventType


@dataclass
class ContextInfo:
    """Work context resolved from a path."""
    active_file: Optional[Path] = None
    active_directory: Optional[Path] = None
    git_branch: Optional[str] = None


@dataclass
class Snapshot:
    """A persisted record of the working context at a point in time."""
    id: str
    timestamp: datetime
    active_file: Optional[str] = None
    active_directory: Optional[str] = None
    git_branch: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def new(
        cls,
        active_file: Optional[str] = None,
        active_directory: Optional[str] = None,
        git_branch: Optional[str] = None,
        notes: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> "Snapshot":
        """Create a snapshot with a fresh id, stamped now unless told otherwise."""
        return cls(
            id=new_id(),
            timestamp=timestamp or utcnow(),
            active_file=active_file,
            active_directory=active_directory,
            git_branch=git_branch,
            notes=notes,
        )


@dataclass
class FileEvent:
    """A persisted filesystem change."""
    id: str
    timestamp: datetime
    path: str
    event_type: FileEventType

    @classmethod
    def new(
        cls,
        path: str,
        event_type: FileEventType,
        timestamp: Optional[datetime] = None,
    ) -> "FileEvent":
        return cls(
            id=new_id(),
            timestamp=timestamp or utcnow(),
            path=path,
            event_type=event_type,
        )


class NudgeType(Enum):
    TAKE_BREAK = "take_break"
    CONTEXT_SWITCH = "context_switch"
    FOCUS_REMINDER = "focus_reminder"
    DAILY_SUMMARY = "daily_summary"
    HIGH_ACTIVITY = "high_activity"


class NudgePriority(IntEnum):
    """Nudge priority; higher value sorts first."""
    LOW = 1
    MEDIUM = 2
    HIGH = 3


@dataclass
class Nudge:
    """An ephemeral suggestion produced by the gatekeeper."""
    message: str
    nudge_type: NudgeType
    priority: NudgePriority
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class ActivitySummary:
    """File-event aggregate for a time range, as returned by the store."""
    total_events: int = 0
    files_modified: int = 0
    files_created: int = 0
    most_active_directory: Optional[str] = None


class ActivityLevel(Enum):
    """Buckets for a day's total event count."""
    NONE = "none"
    LIGHT = "light"
    MODERATE = "moderate"
    SOLID = "solid"
    VERY_HIGH = "very_high"

    @classmethod
    def from_total(cls, total_events: int) -> "ActivityLevel":
        if total_events <= 0:
            return cls.NONE
        if total_events > 100:
            return cls.VERY_HIGH
        if total_events > 50:
            return cls.SOLID
        if total_events > 20:
            return cls.MODERATE
        return cls.LIGHT

    @property
    def description(self) -> str:
        return _LEVEL_DESCRIPTIONS[self]


_LEVEL_DESCRIPTIONS = {
    ActivityLevel.NONE: "No activity recorded today.",
    ActivityLevel.LIGHT: "Light activity day. Consider if this was intentional.",
    ActivityLevel.MODERATE: "Moderate activity today.",
    ActivityLevel.SOLID: "Solid day of work with good activity levels.",
    ActivityLevel.VERY_HIGH: "Very high activity today! Great productivity.",
}


@dataclass
class DailySummary:
    """File-change aggregate for one UTC calendar day."""
    date: datetime
    total_events: int = 0
    files_modified: int = 0
    files_created: int = 0
    most_active_directory: Optional[str] = None

    @property
    def activity_level(self) -> ActivityLevel:
        return ActivityLevel.from_total(self.total_events)

    def to_message(self) -> str:
        """Human-readable one-line summary."""
        parts = []
        if self.total_events > 0:
            parts.append(f"{self.total_events} file events")
        if self.files_modified > 0:
            parts.append(f"{self.files_modified} files modified")
        if self.files_created > 0:
            parts.append(f"{self.files_created} files created")
        if self.most_active_directory:
            parts.append(f"Most active: {self.most_active_directory}")

        if not parts:
            return ActivityLevel.NONE.description
        return " | ".join(parts)
