# qrcheckin/api/issuer.py
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from qrcheckin.api.deps import get_app_settings, get_manager
from qrcheckin.core.config import Settings
from qrcheckin.core.errors import InvalidTTL
from qrcheckin.core.lifecycle import TokenLifecycleManager
from qrcheckin.core.render import checkin_url
from qrcheckin.core.tokens import IssuedToken

router = APIRouter()


class IssueInput(BaseModel):
    eventId: str = Field(..., min_length=1)
    ttlSeconds: int | None = None


class BatchIssueInput(BaseModel):
    eventIds: list[str] = Field(..., min_length=1)
    ttlSeconds: int | list[int | None] | None = None


def _issued_body(issued: IssuedToken, base_url: str) -> dict:
    return {
        "token": issued.token,
        "eventId": issued.event_id,
        "issuedAt": issued.issued_at,
        "expiresAt": issued.expires_at,
        "expirationSeconds": issued.ttl_seconds,
        "checkinUrl": checkin_url(base_url, issued.event_id, issued.token, issued.issued_at),
    }


def invalid_ttl(e: InvalidTTL) -> HTTPException:
    return HTTPException(status_code=422, detail={"code": "INVALID_TTL", "message": str(e)})


@router.post("/issue")
def issue_token(
    body: IssueInput,
    manager: TokenLifecycleManager = Depends(get_manager),
    settings: Settings = Depends(get_app_settings),
):
    try:
        issued = manager.issue(body.eventId, body.ttlSeconds)
    except InvalidTTL as e:
        raise invalid_ttl(e)
    return _issued_body(issued, settings.checkin_base_url)


@router.post("/issue/batch")
def issue_batch(
    body: BatchIssueInput,
    manager: TokenLifecycleManager = Depends(get_manager),
    settings: Settings = Depends(get_app_settings),
):
    try:
        items = manager.issue_batch(body.eventIds, body.ttlSeconds)
    except ValueError as e:
        raise HTTPException(status_code=422, detail={"code": "BATCH_SHAPE", "message": str(e)})

    out = []
    for item in items:
        if item.ok:
            out.append({"ok": True, **_issued_body(item.issued, settings.checkin_base_url)})
        else:
            out.append({
                "ok": False,
                "eventId": item.event_id,
                "error": {"code": "INVALID_TTL", "message": str(item.error)},
            })
    return out
