"""Error taxonomy for token issuance and validation.

Policy rejections (wrong event, expired, already used) are not errors: they
come back as outcome values from the manager. Everything here is raised.
"""


class QRCheckinError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(QRCheckinError):
    """Invalid configuration detected at startup (e.g. bad key material)."""


class DecodeError(QRCheckinError):
    """A presented token could not be turned back into a payload."""


class MalformedToken(DecodeError):
    """The string does not have the structure of a token."""


class TamperedToken(DecodeError):
    """The authentication tag did not verify: forged, altered or foreign key."""


class InvalidTTL(QRCheckinError, ValueError):
    def __init__(self, ttl_seconds, reason: str = "must be a positive integer"):
        self.ttl_seconds = ttl_seconds
        super().__init__(f"ttl_seconds {reason}, got {ttl_seconds!r}")


class StoreUnavailable(QRCheckinError):
    """The used-token store could not be read or written. Retry with backoff.

    Never evidence that a token was already consumed.
    """
