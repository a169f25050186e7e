"""Boundary adapter between raw request fields and the lifecycle manager.

Maps every Outcome to a closed vocabulary of result codes. No security logic
lives here; transport status codes are the HTTP layer's business.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

import structlog

from qrcheckin.core.errors import StoreUnavailable
from qrcheckin.core.lifecycle import TokenLifecycleManager
from qrcheckin.core.store import now_ms
from qrcheckin.core.tokens import (
    AlreadyUsed,
    EventMismatch,
    Expired,
    Malformed,
    Outcome,
    TamperedOrForged,
    Valid,
)

logger = structlog.get_logger()


class Category(str, Enum):
    OK = "ok"
    PRECONDITION = "precondition"
    INVALID_TOKEN = "invalid_token"
    WRONG_EVENT = "wrong_event"
    EXPIRED = "expired"
    REPLAY = "replay"
    UNAVAILABLE = "unavailable"


class Action(str, Enum):
    SCAN_QR_CODE = "scan_qr_code"
    SCAN_NEW_QR = "scan_new_qr"
    REFRESH_QR = "refresh_qr"
    RETRY_LATER = "retry_later"


class ResultCode(str, Enum):
    OK = "OK"
    QR_TOKEN_MISSING = "QR_TOKEN_MISSING"
    EVENT_ID_MISSING = "EVENT_ID_MISSING"
    QR_MALFORMED = "QR_MALFORMED"
    QR_TAMPERED = "QR_TAMPERED"
    INVALID_EVENT = "INVALID_EVENT"
    QR_EXPIRED = "QR_EXPIRED"
    QR_ALREADY_USED = "QR_ALREADY_USED"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


# code -> (category, message, action)
_VOCABULARY: dict[ResultCode, tuple[Category, str, Action | None]] = {
    ResultCode.OK: (Category.OK, "Check-in token accepted", None),
    ResultCode.QR_TOKEN_MISSING: (Category.PRECONDITION, "QR token is required", Action.SCAN_QR_CODE),
    ResultCode.EVENT_ID_MISSING: (Category.PRECONDITION, "Event ID is required", None),
    ResultCode.QR_MALFORMED: (Category.INVALID_TOKEN, "QR code could not be read", Action.SCAN_NEW_QR),
    ResultCode.QR_TAMPERED: (Category.INVALID_TOKEN, "QR code is not authentic", Action.SCAN_NEW_QR),
    ResultCode.INVALID_EVENT: (Category.WRONG_EVENT, "QR code is not valid for this event", Action.SCAN_NEW_QR),
    ResultCode.QR_EXPIRED: (Category.EXPIRED, "QR code has expired. Please scan a new code.", Action.REFRESH_QR),
    ResultCode.QR_ALREADY_USED: (
        Category.REPLAY,
        "This QR code has already been used. Please scan a new code.",
        Action.REFRESH_QR,
    ),
    ResultCode.STORE_UNAVAILABLE: (
        Category.UNAVAILABLE,
        "Check-in is temporarily unavailable",
        Action.RETRY_LATER,
    ),
}


@dataclass(frozen=True)
class GatewayResult:
    code: ResultCode
    category: Category
    message: str
    action: Action | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.code is ResultCode.OK


def _result(code: ResultCode, **details: Any) -> GatewayResult:
    category, message, action = _VOCABULARY[code]
    return GatewayResult(code=code, category=category, message=message, action=action, details=details)


def _present(value: Any) -> bool:
    return isinstance(value, str) and value != ""


class ValidationGateway:
    def __init__(self, manager: TokenLifecycleManager, *, clock: Callable[[], int] = now_ms):
        self._manager = manager
        self._clock = clock

    async def validate(self, event_id: Any, token: Any) -> GatewayResult:
        return await self._run(self._manager.validate_and_consume, event_id, token)

    async def inspect(self, event_id: Any, token: Any) -> GatewayResult:
        """Like validate, but never consumes the token."""
        return await self._run(self._manager.inspect, event_id, token)

    async def _run(self, check, event_id: Any, token: Any) -> GatewayResult:
        # preconditions first; the manager is never called without both fields
        if not _present(token):
            return _result(ResultCode.QR_TOKEN_MISSING)
        if not _present(event_id):
            return _result(ResultCode.EVENT_ID_MISSING)

        try:
            outcome = await check(token, event_id)
        except StoreUnavailable as e:
            logger.error("qr.gateway.store_unavailable", event_id=event_id, error=str(e))
            return _result(ResultCode.STORE_UNAVAILABLE)
        return self.map_outcome(outcome, event_id)

    def map_outcome(self, outcome: Outcome, expected_event_id: str) -> GatewayResult:
        if isinstance(outcome, Valid):
            return _result(
                ResultCode.OK,
                eventId=outcome.event_id,
                issuedAt=outcome.issued_at,
                expiresAt=outcome.expires_at,
                timeRemaining=max(0, outcome.expires_at - self._clock()),
            )
        if isinstance(outcome, Malformed):
            return _result(ResultCode.QR_MALFORMED)
        if isinstance(outcome, TamperedOrForged):
            return _result(ResultCode.QR_TAMPERED)
        if isinstance(outcome, EventMismatch):
            return _result(
                ResultCode.INVALID_EVENT,
                expectedEventId=expected_event_id,
                actualEventId=outcome.actual_event_id,
            )
        if isinstance(outcome, Expired):
            return _result(ResultCode.QR_EXPIRED, expiresAt=outcome.expires_at, timeRemaining=0)
        if isinstance(outcome, AlreadyUsed):
            return _result(ResultCode.QR_ALREADY_USED)
        raise TypeError(f"unknown outcome {outcome!r}")
