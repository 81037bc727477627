"""Identity inputs for audit appends.

Authentication happens outside the audit core. The core only receives the
outcome: who the actor is and where the request came from, or why the actor
could not be established. Failures are values, not exceptions.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class IdentityErrorKind(str, Enum):
    """Why an actor could not be identified."""
    MISSING_TOKEN = "missing_token"
    INVALID_TOKEN = "invalid_token"
    EXPIRED_TOKEN = "expired_token"
    UNAUTHORIZED = "unauthorized"


class Identity(BaseModel):
    """A resolved actor."""
    model_config = ConfigDict(frozen=True)

    actor_id: str = Field(..., min_length=1, description="Authenticated user id")
    origin: Optional[str] = Field(default=None, description="Client address")


class IdentityResult(BaseModel):
    """Either an Identity or an error kind (never both)."""
    model_config = ConfigDict(frozen=True)

    identity: Optional[Identity] = None
    error: Optional[IdentityErrorKind] = None
    origin: Optional[str] = Field(
        default=None,
        description="Client address, known even when authentication failed"
    )

    @classmethod
    def ok(cls, actor_id: str, origin: Optional[str] = None) -> "IdentityResult":
        return cls(identity=Identity(actor_id=actor_id, origin=origin), origin=origin)

    @classmethod
    def fail(cls, kind: IdentityErrorKind, origin: Optional[str] = None) -> "IdentityResult":
        return cls(error=kind, origin=origin)

    @property
    def is_ok(self) -> bool:
        return self.identity is not None

    @property
    def actor_id(self) -> Optional[str]:
        return self.identity.actor_id if self.identity else None
