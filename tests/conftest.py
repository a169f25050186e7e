# tests/conftest.py
import base64
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# --- Make 'qrcheckin' importable from the repo root ---
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from qrcheckin.core.config import Settings
from qrcheckin.core.crypto import TokenCodec
from qrcheckin.core.gateway import ValidationGateway
from qrcheckin.core.lifecycle import TokenLifecycleManager
from qrcheckin.core.store import InMemoryUsedTokenStore

T0 = 1_700_000_000_000  # fixed epoch ms for deterministic clocks


class FakeClock:
    """Manually advanced epoch-ms clock."""

    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def _b64key(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


@pytest.fixture
def key() -> bytes:
    return AESGCM.generate_key(bit_length=256)


@pytest.fixture
def codec(key) -> TokenCodec:
    return TokenCodec(key)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> InMemoryUsedTokenStore:
    return InMemoryUsedTokenStore(shards=8, clock=clock)


@pytest.fixture
def manager(codec, store, clock) -> TokenLifecycleManager:
    return TokenLifecycleManager(codec, store, default_ttl_seconds=60, clock=clock)


@pytest.fixture
def gateway(manager, clock) -> ValidationGateway:
    return ValidationGateway(manager, clock=clock)


def _prepare_test_env(monkeypatch, tmp: Path, key: bytes) -> None:
    # Minimal variables so Settings works without a .env file
    monkeypatch.setenv("QR_SECRET_KEY", _b64key(key))
    monkeypatch.setenv("QR_DEFAULT_TTL_SECONDS", "60")
    monkeypatch.setenv("DB_URL", f"sqlite+aiosqlite:///{(tmp / 'test.sqlite3').as_posix()}")
    monkeypatch.setenv("CHECKIN_BASE_URL", "http://testserver/checkin")


@pytest.fixture
def make_client(tmp_path, key, monkeypatch):
    """
    Builds a TestClient over a fresh app:
    - random AES key
    - sqlite file under tmp_path when the sql store is requested
    Entering the client runs the lifespan (store, reaper, tables).
    """
    monkeypatch.delenv("USED_TOKEN_STORE", raising=False)
    _prepare_test_env(monkeypatch, tmp_path, key)

    def _make(**overrides):
        from qrcheckin.main import create_app
        settings = Settings(_env_file=None, **overrides)
        return TestClient(create_app(settings))

    return _make


@pytest.fixture
def client(make_client):
    with make_client() as c:
        yield c
