"""Operator alerts: persisted for the UI and mirrored to the log."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from disputesync.domain.model import Alert, AlertLevel, AlertScope

if TYPE_CHECKING:
    from datetime import datetime

    from disputesync.domain.ports.unit_of_work import SyncRepositories

log = logging.getLogger(__name__)

_LOG_LEVELS = {
    AlertLevel.INFO: logging.INFO,
    AlertLevel.WARNING: logging.WARNING,
    AlertLevel.ERROR: logging.ERROR,
}


def raise_alert(
    repositories: SyncRepositories,
    scope: AlertScope,
    ref: str,
    message: str,
    *,
    at: datetime,
    level: AlertLevel = AlertLevel.WARNING,
) -> Alert:
    alert = Alert(scope=scope, ref=ref, level=level, message=message, created_at=at)
    repositories.alerts.add(alert)
    log.log(_LOG_LEVELS[level], "[%s %s] %s", scope, ref, message)
    return alert
