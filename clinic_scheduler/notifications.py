"""
Notification hand-off.

The engine only decides *that* a patient should hear about something and
which template applies. Delivery (push, SMS, WhatsApp) lives elsewhere.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)

TEMPLATE_KEYS = frozenset({
    "appointment_booked",
    "walk_in_registered",
    "appointment_status_changed",
    "break_rescheduled",
    "doctor_running_late",
})


class NotificationDispatcher(ABC):
    @abstractmethod
    def notify(self, appointment_id: str, recipient_id: Optional[str], template_key: str) -> None:
        """Queue one message. May raise; callers go through safe_notify."""


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Default dispatcher: records what would have been sent."""

    def notify(self, appointment_id: str, recipient_id: Optional[str], template_key: str) -> None:
        logger.info(f"[notify:{template_key}] appointment={appointment_id} recipient={recipient_id}")


def safe_notify(
    dispatcher: NotificationDispatcher,
    appointment_id: str,
    recipient_id: Optional[str],
    template_key: str
) -> bool:
    """
    Fire-and-forget. Scheduling state is already committed, so a delivery
    failure is logged and never propagated.
    """
    if recipient_id is None:
        return False
    if template_key not in TEMPLATE_KEYS:
        logger.warning(f"Unknown notification template {template_key!r}")
    try:
        dispatcher.notify(appointment_id, recipient_id, template_key)
        return True
    except Exception as e:
        logger.error(f"Notification {template_key} for {appointment_id} failed: {e}")
        return False
