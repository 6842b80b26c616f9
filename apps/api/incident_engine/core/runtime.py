"""
Process runtime: the long-lived components shared by requests and jobs.

Built once at startup and stored on ``app.state.runtime``.
"""

import logging
from dataclasses import dataclass

import httpx
from sqlalchemy.orm import sessionmaker

from incident_engine.core.background import BackgroundTaskRunner
from incident_engine.core.config import Settings, settings as default_settings
from incident_engine.core.security import resolve_user_id
from incident_engine.core.websocket import ConnectionManager, TokenValidator
from incident_engine.jobs.alert_scan import build_alert_scan_task
from incident_engine.jobs.scheduler import RecurringTask
from incident_engine.services.alert_monitor_service import AlertMonitor
from incident_engine.services.channels.registry import ChannelRegistry, build_default_registry
from incident_engine.services.escalation import AlertThresholds
from incident_engine.services.notification_service import NotificationDispatcher
from incident_engine.services.reopen_request_service import ReopenWorkflow

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    session_factory: sessionmaker
    connections: ConnectionManager
    registry: ChannelRegistry
    dispatcher: NotificationDispatcher
    background: BackgroundTaskRunner
    alert_monitor: AlertMonitor
    reopen_workflow: ReopenWorkflow
    alert_scan: RecurringTask

    def start(self) -> None:
        if self.settings.ALERT_SCAN_ENABLED:
            self.alert_scan.start()
        else:
            logger.info("Alert scan disabled (ALERT_SCAN_ENABLED=false)")

    async def shutdown(self) -> None:
        """Stop ticking, drain side effects, then close every socket."""
        grace = self.settings.ALERT_SCAN_SHUTDOWN_GRACE_SECONDS
        await self.alert_scan.stop(timeout=grace)
        await self.background.shutdown(timeout=grace)
        await self.connections.shutdown()
        logger.info("Runtime shut down")


def build_runtime(
    session_factory: sessionmaker,
    settings: Settings = default_settings,
    *,
    token_validator: TokenValidator = resolve_user_id,
    registry: ChannelRegistry | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Runtime:
    connections = ConnectionManager(token_validator)
    registry = registry or build_default_registry(connections, settings, transport=transport)
    dispatcher = NotificationDispatcher(
        registry,
        connections=connections,
        channel_timeout=settings.CHANNEL_DELIVERY_TIMEOUT_SECONDS,
    )
    background = BackgroundTaskRunner()
    alert_monitor = AlertMonitor(
        session_factory,
        dispatcher,
        connections,
        thresholds=AlertThresholds.from_settings(settings),
    )
    reopen_workflow = ReopenWorkflow(
        session_factory,
        dispatcher,
        connections,
        background,
        deadline=settings.reopen_deadline,
    )
    return Runtime(
        settings=settings,
        session_factory=session_factory,
        connections=connections,
        registry=registry,
        dispatcher=dispatcher,
        background=background,
        alert_monitor=alert_monitor,
        reopen_workflow=reopen_workflow,
        alert_scan=build_alert_scan_task(alert_monitor, settings),
    )
