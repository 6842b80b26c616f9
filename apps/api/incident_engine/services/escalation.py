"""
Escalation evaluator - elapsed time to alert level.

Pure functions only: no database, no clock reads. Callers pass ``now``.
"""

import math
from dataclasses import dataclass
from datetime import datetime

from incident_engine.core.config import Settings, settings
from incident_engine.db.enums import AlertLevel, NotificationPriority
from incident_engine.utils.time import as_utc


@dataclass(frozen=True)
class AlertThresholds:
    """Upper bound (inclusive, in minutes) of each non-terminal level."""

    green_max: int = 1
    yellow_max: int = 3
    orange_max: int = 5

    def __post_init__(self) -> None:
        if not 0 <= self.green_max < self.yellow_max < self.orange_max:
            raise ValueError("alert thresholds must be non-negative and strictly increasing")

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> "AlertThresholds":
        source = source or settings
        return cls(
            green_max=source.ALERT_GREEN_MAX_MINUTES,
            yellow_max=source.ALERT_YELLOW_MAX_MINUTES,
            orange_max=source.ALERT_ORANGE_MAX_MINUTES,
        )


DEFAULT_THRESHOLDS = AlertThresholds()

PRIORITY_BY_LEVEL: dict[AlertLevel, NotificationPriority] = {
    AlertLevel.YELLOW: NotificationPriority.NORMAL,
    AlertLevel.ORANGE: NotificationPriority.HIGH,
    AlertLevel.RED: NotificationPriority.URGENT,
}


def level_for(elapsed_minutes: int, thresholds: AlertThresholds = DEFAULT_THRESHOLDS) -> AlertLevel:
    """Monotone step function from elapsed minutes to alert level."""
    if elapsed_minutes <= thresholds.green_max:
        return AlertLevel.GREEN
    if elapsed_minutes <= thresholds.yellow_max:
        return AlertLevel.YELLOW
    if elapsed_minutes <= thresholds.orange_max:
        return AlertLevel.ORANGE
    return AlertLevel.RED


def elapsed_minutes(since: datetime, now: datetime) -> int:
    """Whole minutes between two instants, rounded up and never negative."""
    seconds = (as_utc(now) - as_utc(since)).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / 60)


def priority_for(level: AlertLevel) -> NotificationPriority | None:
    """Notification priority for a level; GREEN never notifies."""
    return PRIORITY_BY_LEVEL.get(level)


def describe_level(level: AlertLevel) -> str:
    return {
        AlertLevel.GREEN: "on time",
        AlertLevel.YELLOW: "waiting",
        AlertLevel.ORANGE: "delayed",
        AlertLevel.RED: "critical",
    }[level]
