"""Operational logger - severity-tagged application log lines.

Lines look like:

    [user:alice] [ip:10.0.0.7] [req:3f9a1c2e] Login rejected | {"reason":"expired"}

and are written through stdlib logging, so handlers, rotation of plain log
files and formatting stay the host application's choice. Secure audit lines
that must be chained go through an attached RotatingFileSink instead.
"""

import json
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional
from uuid import uuid4

from auditchain.audit.schemas import AuditRecord
from auditchain.common.config.features import Feature, FeatureToggles
from auditchain.common.exceptions import ConfigurationError, ValidationError
from auditchain.common.logging.logger import AUDIT, SECURITY

if TYPE_CHECKING:
    from auditchain.audit.rotating_sink import RotatingFileSink


class OperationalLogger:
    """Application logger with SECURITY and AUDIT severities.

    Every call is a no-op when the logger feature toggle is off. Also usable
    as a Notifier for AuditLog.
    """

    LEVELS: Dict[str, int] = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
        "SECURITY": SECURITY,
        "AUDIT": AUDIT,
    }

    DEFAULT_USER = "system"
    DEFAULT_ORIGIN = "local"

    def __init__(
        self,
        name: str = "auditchain.operational",
        features: Optional[FeatureToggles] = None,
        secure_sink: Optional["RotatingFileSink"] = None,
    ):
        """Initialize operational logger.

        Args:
            name: stdlib logger name lines are written to
            features: Feature toggles (environment-backed if not provided)
            secure_sink: Chained sink used by audit_secure()
        """
        self.logger = logging.getLogger(name)
        self.features = features or FeatureToggles()
        self.secure_sink = secure_sink

    def _enabled(self) -> bool:
        return self.features.is_enabled(Feature.LOGGER)

    def format_line(self, message: str, context: Optional[Dict[str, Any]] = None) -> str:
        """Build one log line from a message and its context.

        Recognised context keys: user, origin (or ip), request_id, extra.
        """
        context = context or {}
        user = context.get("user") or self.DEFAULT_USER
        origin = context.get("origin") or context.get("ip") or self.DEFAULT_ORIGIN
        request_id = context.get("request_id") or uuid4().hex[:8]
        extra = context.get("extra")

        line = f"[user:{user}] [ip:{origin}] [req:{request_id}] {message}"
        if extra:
            line += " | " + json.dumps(extra, ensure_ascii=False, default=str)
        return line

    def log(self, level: str, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        """Write a log line at the given severity.

        Raises:
            ValidationError: If level is not a known severity
        """
        if not self._enabled():
            return

        levelno = self.LEVELS.get(str(level).upper())
        if levelno is None:
            raise ValidationError(
                f"Invalid log level: {level}",
                details={"allowed": list(self.LEVELS)},
            )

        self.logger.log(levelno, self.format_line(message, context))

    def debug(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        self.log("DEBUG", message, context)

    def info(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        self.log("INFO", message, context)

    def warning(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        self.log("WARNING", message, context)

    def error(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        self.log("ERROR", message, context)

    def critical(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        self.log("CRITICAL", message, context)

    def security(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        self.log("SECURITY", message, context)

    def audit(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        self.log("AUDIT", message, context)

    def audit_secure(
        self,
        action: str,
        payload: Optional[Dict[str, Any]] = None,
        actor_id: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> Optional[AuditRecord]:
        """Append a chained line to the secure sink and log it at AUDIT.

        Returns:
            The chained record, or None if logging or auditing is disabled

        Raises:
            ConfigurationError: If no secure sink is attached
            StorageError, LockTimeoutError: From the sink, unchanged
        """
        if not self._enabled():
            return None
        if self.secure_sink is None:
            raise ConfigurationError("audit_secure requires a secure sink")

        record = self.secure_sink.append(
            action, payload=payload, actor_id=actor_id, origin=origin
        )
        if record is not None:
            self.audit(
                action,
                {
                    "user": actor_id,
                    "origin": origin,
                    "extra": {"id": record.id, "hash": record.hash},
                },
            )
        return record

    def notify(self, severity: str, message: str, context: Dict[str, Any]) -> None:
        """Notifier hook: log the event with its context as extra data."""
        self.log(severity, message, {"extra": context})
