from io import BytesIO

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response, StreamingResponse

from qrcheckin.api.deps import get_app_settings, get_manager
from qrcheckin.api.issuer import invalid_ttl
from qrcheckin.core.config import Settings
from qrcheckin.core.errors import InvalidTTL
from qrcheckin.core.lifecycle import TokenLifecycleManager
from qrcheckin.core.render import checkin_url, render_png, render_svg

router = APIRouter()


def _issue_for_render(manager: TokenLifecycleManager, event_id: str, ttl: int | None):
    try:
        return manager.issue(event_id, ttl)
    except InvalidTTL as e:
        raise invalid_ttl(e)


def _token_headers(issued) -> dict:
    return {
        "X-QR-Token": issued.token,
        "X-QR-Expires-At": str(issued.expires_at),
        "Cache-Control": "no-store",
    }


@router.get("/{event_id}.png")
def qr_png(
    event_id: str,
    ttlSeconds: int | None = Query(None),
    manager: TokenLifecycleManager = Depends(get_manager),
    settings: Settings = Depends(get_app_settings),
):
    issued = _issue_for_render(manager, event_id, ttlSeconds)
    url = checkin_url(settings.checkin_base_url, event_id, issued.token, issued.issued_at)
    buf = BytesIO(render_png(url))
    return StreamingResponse(buf, media_type="image/png", headers=_token_headers(issued))


@router.get("/{event_id}.svg")
def qr_svg(
    event_id: str,
    ttlSeconds: int | None = Query(None),
    manager: TokenLifecycleManager = Depends(get_manager),
    settings: Settings = Depends(get_app_settings),
):
    issued = _issue_for_render(manager, event_id, ttlSeconds)
    url = checkin_url(settings.checkin_base_url, event_id, issued.token, issued.issued_at)
    return Response(render_svg(url), media_type="image/svg+xml", headers=_token_headers(issued))
