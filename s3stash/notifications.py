# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Notification sink contract.

Engines report per-item and per-run outcomes to an optional sink. Delivery
(webhooks, chat, mail) belongs to the host application; the engines only
need something callable with the NotificationSink signature. Delivery is
fire-and-forget: failures are logged and never reach the caller.
"""

from enum import Enum
from typing import Dict, Protocol

import structlog

logger = structlog.get_logger()


class NotificationKind(str, Enum):
    """Outcome category of a notification."""

    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"


class NotificationSink(Protocol):
    """Protocol for receiving engine notifications."""

    def __call__(
        self,
        kind: NotificationKind,
        subject: str,
        operation: str,
        details: Dict[str, str],
        error: BaseException | None = None,
    ) -> None:
        """
        Receive one notification.

        Args:
            kind: success, error or warning
            subject: What the notification is about (usually a service name)
            operation: One of 'backup', 'restore' or 'cleanup'
            details: Human-readable key/value pairs
            error: The failure, for error and warning notifications
        """
        ...


class LoggingNotificationSink:
    """Sink that writes notifications to the structured log."""

    def __call__(
        self,
        kind: NotificationKind,
        subject: str,
        operation: str,
        details: Dict[str, str],
        error: BaseException | None = None,
    ) -> None:
        log = logger.error if kind == NotificationKind.ERROR else logger.info
        log(
            "notification",
            kind=kind.value,
            subject=subject,
            operation=operation,
            error=str(error) if error else None,
            **{k.lower().replace(" ", "_"): v for k, v in details.items()},
        )


def safe_notify(
    sink: NotificationSink | None,
    kind: NotificationKind,
    subject: str,
    operation: str,
    details: Dict[str, str],
    error: BaseException | None = None,
) -> None:
    """Deliver a notification, logging instead of raising on failure."""
    if sink is None:
        return
    try:
        sink(kind, subject, operation, details, error)
    except Exception as e:
        logger.warning(
            "notification_delivery_failed",
            subject=subject,
            operation=operation,
            kind=kind.value,
            error=str(e),
        )


def format_bytes(size: int) -> str:
    """Render a byte count with binary units, e.g. 1536 -> '1.5 KB'."""
    unit = 1024
    if size < unit:
        return f"{size} B"
    div, exp = unit, 0
    n = size // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{size / div:.1f} {'KMGTPE'[exp]}B"
