"""Notifier interface - where the audit core reports operational events.

Notifications are fire-and-forget: the core logs and drops any exception a
notifier raises, so a broken notifier can never fail an append.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class Notifier(Protocol):
    """Anything that can receive operational notifications."""

    def notify(self, severity: str, message: str, context: Dict[str, Any]) -> None:
        ...


class NullNotifier:
    """Discards every notification."""

    def notify(self, severity: str, message: str, context: Dict[str, Any]) -> None:
        return None


class CompositeNotifier:
    """Fans a notification out to several notifiers.

    A notifier that raises is logged and skipped; the rest still run.
    """

    def __init__(self, notifiers: Optional[List[Notifier]] = None):
        self.notifiers: List[Notifier] = list(notifiers or [])

    def add(self, notifier: Notifier) -> None:
        self.notifiers.append(notifier)

    def notify(self, severity: str, message: str, context: Dict[str, Any]) -> None:
        for notifier in self.notifiers:
            try:
                notifier.notify(severity, message, context)
            except Exception as e:
                logger.warning(
                    f"Notifier {type(notifier).__name__} failed: {e}"
                )
