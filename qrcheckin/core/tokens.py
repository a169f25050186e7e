"""Token payload, issuance results and validation outcomes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from qrcheckin.core.errors import InvalidTTL

NONCE_BYTES = 16


@dataclass(frozen=True)
class TokenPayload:
    event_id: str
    issued_at: int  # epoch ms
    expires_at: int  # epoch ms
    nonce: str  # NONCE_BYTES random bytes, hex

    def to_dict(self) -> dict:
        return {
            "eventId": self.event_id,
            "issuedAt": self.issued_at,
            "expiresAt": self.expires_at,
            "nonce": self.nonce,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "TokenPayload":
        return cls(
            event_id=d["eventId"],
            issued_at=d["issuedAt"],
            expires_at=d["expiresAt"],
            nonce=d["nonce"],
        )


@dataclass(frozen=True)
class IssuedToken:
    token: str
    event_id: str
    issued_at: int
    expires_at: int
    ttl_seconds: int


@dataclass(frozen=True)
class BatchItem:
    """One entry of a batch issuance: exactly one of ``issued``/``error`` is set."""

    event_id: str
    issued: IssuedToken | None = None
    error: InvalidTTL | None = None

    @property
    def ok(self) -> bool:
        return self.issued is not None


# --- Validation outcomes (closed set) ---

@dataclass(frozen=True)
class Malformed:
    pass


@dataclass(frozen=True)
class TamperedOrForged:
    pass


@dataclass(frozen=True)
class EventMismatch:
    actual_event_id: str


@dataclass(frozen=True)
class Expired:
    expires_at: int


@dataclass(frozen=True)
class AlreadyUsed:
    pass


@dataclass(frozen=True)
class Valid:
    event_id: str
    issued_at: int
    expires_at: int


Outcome = Union[Malformed, TamperedOrForged, EventMismatch, Expired, AlreadyUsed, Valid]
