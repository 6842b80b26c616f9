"""Alert scan job: runs the alert monitor on a fixed cadence."""

from incident_engine.core.config import Settings
from incident_engine.jobs.scheduler import RecurringTask
from incident_engine.services.alert_monitor_service import AlertMonitor

ALERT_SCAN_TASK_NAME = "alert-scan"


def build_alert_scan_task(monitor: AlertMonitor, settings: Settings) -> RecurringTask:
    return RecurringTask(
        ALERT_SCAN_TASK_NAME,
        monitor.run_scan,
        interval_seconds=settings.ALERT_SCAN_INTERVAL_SECONDS,
    )
