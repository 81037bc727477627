"""Observability - notifications and operational logging around the audit core."""

from auditchain.observability.notifier import CompositeNotifier, Notifier, NullNotifier
from auditchain.observability.operational_log import OperationalLogger

__all__ = [
    "Notifier",
    "NullNotifier",
    "CompositeNotifier",
    "OperationalLogger",
]
