"""Issuance and atomic validate-and-consume of QR check-in tokens."""

from __future__ import annotations

import secrets
from typing import Callable, Iterable, Sequence

import structlog

from qrcheckin.core.crypto import TokenCodec
from qrcheckin.core.errors import InvalidTTL, MalformedToken, TamperedToken
from qrcheckin.core.log import nonce_tag
from qrcheckin.core.store import UsedTokenStore, now_ms
from qrcheckin.core.tokens import (
    NONCE_BYTES,
    AlreadyUsed,
    BatchItem,
    EventMismatch,
    Expired,
    IssuedToken,
    Malformed,
    Outcome,
    TamperedOrForged,
    TokenPayload,
    Valid,
)

logger = structlog.get_logger()


class TokenLifecycleManager:
    """Issues tokens and performs validate-and-consume.

    Check order on validation is malformed -> tampered -> event mismatch ->
    expired -> already used -> valid. Only the last step touches the store,
    so a wrong-event or expired token is never recorded as used.
    """

    def __init__(
        self,
        codec: TokenCodec,
        store: UsedTokenStore,
        *,
        default_ttl_seconds: int = 60,
        max_ttl_seconds: int | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self._codec = codec
        self._store = store
        self._default_ttl = self._check_ttl(default_ttl_seconds)
        self._max_ttl = max_ttl_seconds
        self._clock = clock

    @property
    def store(self) -> UsedTokenStore:
        return self._store

    @property
    def default_ttl_seconds(self) -> int:
        return self._default_ttl

    @staticmethod
    def _check_ttl(ttl_seconds) -> int:
        # bool is an int subclass; True is not a TTL
        if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int) or ttl_seconds <= 0:
            raise InvalidTTL(ttl_seconds)
        return ttl_seconds

    def issue(self, event_id: str, ttl_seconds: int | None = None) -> IssuedToken:
        ttl = self._default_ttl if ttl_seconds is None else self._check_ttl(ttl_seconds)
        if self._max_ttl is not None and ttl > self._max_ttl:
            raise InvalidTTL(ttl, f"must not exceed {self._max_ttl}")

        issued_at = self._clock()
        payload = TokenPayload(
            event_id=event_id,
            issued_at=issued_at,
            expires_at=issued_at + ttl * 1000,
            nonce=secrets.token_hex(NONCE_BYTES),
        )
        token = self._codec.encode(payload)
        logger.info("qr.issued", event_id=event_id, ttl_seconds=ttl, nonce=nonce_tag(payload.nonce))
        return IssuedToken(
            token=token,
            event_id=event_id,
            issued_at=payload.issued_at,
            expires_at=payload.expires_at,
            ttl_seconds=ttl,
        )

    def issue_batch(
        self,
        event_ids: Iterable[str],
        ttl_seconds: int | Sequence[int | None] | None = None,
    ) -> list[BatchItem]:
        """Issue one token per event id; a bad TTL fails only its own entry.

        ``ttl_seconds`` is either one TTL for every id or a sequence with one
        TTL per id (``None`` entries use the default).
        """
        event_ids = list(event_ids)
        if isinstance(ttl_seconds, Sequence) and not isinstance(ttl_seconds, str):
            ttls = list(ttl_seconds)
            if len(ttls) != len(event_ids):
                raise ValueError("ttl_seconds sequence must match event_ids in length")
        else:
            ttls = [ttl_seconds] * len(event_ids)

        items = []
        for event_id, ttl in zip(event_ids, ttls):
            try:
                items.append(BatchItem(event_id=event_id, issued=self.issue(event_id, ttl)))
            except InvalidTTL as e:
                items.append(BatchItem(event_id=event_id, error=e))
        return items

    def _precheck(self, token: str, expected_event_id: str) -> TokenPayload | Outcome:
        """Stateless checks: decode, event match, expiry. Returns the payload if all pass."""
        try:
            payload = self._codec.decode(token)
        except MalformedToken as e:
            logger.warning("qr.rejected.malformed", expected_event_id=expected_event_id, reason=str(e))
            return Malformed()
        except TamperedToken:
            logger.warning("qr.rejected.tampered", expected_event_id=expected_event_id)
            return TamperedOrForged()

        if payload.event_id != expected_event_id:
            logger.info("qr.rejected.event_mismatch", expected_event_id=expected_event_id, actual_event_id=payload.event_id)
            return EventMismatch(actual_event_id=payload.event_id)

        if self._clock() > payload.expires_at:
            logger.info("qr.rejected.expired", event_id=payload.event_id, expires_at=payload.expires_at)
            return Expired(expires_at=payload.expires_at)

        return payload

    async def inspect(self, token: str, expected_event_id: str) -> Outcome:
        """Same checks as validate_and_consume, but read-only.

        ``Valid`` here means the token would be accepted right now; it is not
        spent, and a later validate_and_consume may still lose a race.
        """
        payload = self._precheck(token, expected_event_id)
        if not isinstance(payload, TokenPayload):
            return payload
        if await self._store.is_consumed(payload.nonce):
            return AlreadyUsed()
        return Valid(event_id=payload.event_id, issued_at=payload.issued_at, expires_at=payload.expires_at)

    async def validate_and_consume(self, token: str, expected_event_id: str) -> Outcome:
        """
        Returns exactly one Outcome. StoreUnavailable from the store is raised,
        never turned into AlreadyUsed.
        """
        payload = self._precheck(token, expected_event_id)
        if not isinstance(payload, TokenPayload):
            return payload

        if not await self._store.try_consume(payload.nonce, payload.expires_at):
            logger.warning("qr.rejected.replay", event_id=payload.event_id, nonce=nonce_tag(payload.nonce))
            return AlreadyUsed()

        logger.info("qr.consumed", event_id=payload.event_id, nonce=nonce_tag(payload.nonce))
        return Valid(event_id=payload.event_id, issued_at=payload.issued_at, expires_at=payload.expires_at)
