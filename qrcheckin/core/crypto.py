# qrcheckin/core/crypto.py
from __future__ import annotations

import base64
import binascii
import json
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from qrcheckin.core.errors import MalformedToken, TamperedToken
from qrcheckin.core.tokens import TokenPayload

# Token layout (before base64url): version(1) | iv(12) | ciphertext | tag(16)
TOKEN_VERSION = 1
IV_BYTES = 12
TAG_BYTES = 16
_HEADER = bytes([TOKEN_VERSION])
_MIN_RAW_LEN = 1 + IV_BYTES + TAG_BYTES


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(s: str) -> bytes:
    """base64url without padding -> bytes. Rejects anything outside the alphabet."""
    s += "=" * (-len(s) % 4)
    return base64.b64decode(s.encode("ascii"), altchars=b"-_", validate=True)


class TokenCodec:
    """AES-256-GCM encoding of a TokenPayload into a URL-safe string.

    Knows nothing about time or usage. The version byte is bound as associated
    data so it cannot be swapped without failing authentication.
    """

    def __init__(self, key: bytes):
        if len(key) != 32:
            raise ValueError("TokenCodec key must be 32 bytes")
        self._aead = AESGCM(key)

    def encode(self, payload: TokenPayload) -> str:
        plaintext = json.dumps(payload.to_dict(), separators=(",", ":"), sort_keys=True).encode("utf-8")
        iv = os.urandom(IV_BYTES)
        sealed = self._aead.encrypt(iv, plaintext, _HEADER)  # ciphertext || tag
        return _b64url_encode(_HEADER + iv + sealed)

    def decode(self, token: str) -> TokenPayload:
        """
        Raises MalformedToken if the string cannot be split into its parts,
        TamperedToken if the GCM tag does not verify.
        """
        if not isinstance(token, str) or not token:
            raise MalformedToken("empty token")
        try:
            raw = _b64url_decode(token)
        except (binascii.Error, ValueError, UnicodeEncodeError) as e:
            raise MalformedToken("token is not base64url") from e

        if len(raw) < _MIN_RAW_LEN:
            raise MalformedToken("token too short")
        if raw[0] != TOKEN_VERSION:
            raise MalformedToken(f"unknown token version {raw[0]}")

        iv = raw[1:1 + IV_BYTES]
        sealed = raw[1 + IV_BYTES:]
        try:
            plaintext = self._aead.decrypt(iv, sealed, _HEADER)
        except InvalidTag as e:
            raise TamperedToken("authentication tag mismatch") from e

        # Authenticated plaintext was produced by encode(); its shape is trusted.
        return TokenPayload.from_dict(json.loads(plaintext.decode("utf-8")))
