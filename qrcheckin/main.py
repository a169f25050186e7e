# qrcheckin/main.py
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from qrcheckin.api.holder import router as holder_router
from qrcheckin.api.issuer import router as issuer_router
from qrcheckin.api.verifier import router as verifier_router
from qrcheckin.core.config import Settings, get_settings
from qrcheckin.core.crypto import TokenCodec
from qrcheckin.core.errors import StoreUnavailable
from qrcheckin.core.gateway import ValidationGateway
from qrcheckin.core.lifecycle import TokenLifecycleManager
from qrcheckin.core.log import configure_logging
from qrcheckin.core.reaper import Reaper
from qrcheckin.core.store import InMemoryUsedTokenStore, SqlUsedTokenStore
from qrcheckin.db.session import create_tables, make_engine, make_sessionmaker

logger = structlog.get_logger()


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_json)
    # fail at startup on bad key material, not on the first request
    codec = TokenCodec(settings.key_bytes())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # === STARTUP ===
        engine = None
        if settings.used_token_store == "sql":
            engine = make_engine(settings.db_url)
            await create_tables(engine)
            store = SqlUsedTokenStore(make_sessionmaker(engine))
        else:
            store = InMemoryUsedTokenStore(settings.store_shards)

        manager = TokenLifecycleManager(
            codec,
            store,
            default_ttl_seconds=settings.default_ttl_seconds,
            max_ttl_seconds=settings.max_ttl_seconds,
        )
        reaper = Reaper(store, settings.reap_interval_seconds)

        app.state.settings = settings
        app.state.manager = manager
        app.state.gateway = ValidationGateway(manager)
        app.state.reaper = reaper
        reaper.start()
        logger.info("app.started", store=settings.used_token_store, default_ttl_seconds=settings.default_ttl_seconds)
        yield
        # === SHUTDOWN ===
        await reaper.stop()
        if engine is not None:
            await engine.dispose()

    app = FastAPI(title="QR check-in tokens", lifespan=lifespan)

    app.include_router(issuer_router, prefix="/qr", tags=["issuer"])
    app.include_router(holder_router, prefix="/qr", tags=["holder"])
    app.include_router(verifier_router, prefix="/checkin", tags=["verifier"])

    @app.get("/health")
    async def health(request: Request):
        store = request.app.state.manager.store
        try:
            used = await store.size()
        except StoreUnavailable as e:
            logger.error("health.store_unavailable", error=str(e))
            return JSONResponse(status_code=503, content={"ok": False})
        return {"ok": True, "usedTokens": used}

    return app
