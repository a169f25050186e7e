from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from qrcheckin.api.deps import get_gateway
from qrcheckin.core.gateway import Category, GatewayResult, ValidationGateway

router = APIRouter()

# category -> HTTP status; everything not listed is a 400
_STATUS = {
    Category.OK: 200,
    Category.UNAVAILABLE: 503,
}


class ValidateInput(BaseModel):
    # missing or non-string fields reach the gateway, which reports them
    # with their own codes
    eventId: Any = None
    token: Any = Field(None, validation_alias=AliasChoices("token", "qrToken"))


def to_response(res: GatewayResult) -> JSONResponse:
    status = _STATUS.get(res.category, 400)
    if res.ok:
        return JSONResponse(status_code=status, content={"success": True, "data": res.details})

    error = {"code": res.code.value, "category": res.category.value, "message": res.message}
    if res.action is not None:
        error["action"] = res.action.value
    if res.details:
        error["details"] = res.details
    headers = {"Retry-After": "1"} if status == 503 else None
    return JSONResponse(status_code=status, content={"success": False, "error": error}, headers=headers)


@router.post("/validate")
async def validate_checkin(body: Any = Body(None), gateway: ValidationGateway = Depends(get_gateway)):
    # absent or non-object bodies carry no fields
    fields = ValidateInput.model_validate(body) if isinstance(body, dict) else ValidateInput()
    res = await gateway.validate(fields.eventId, fields.token)
    return to_response(res)


@router.get("/validate-qr")
async def inspect_checkin(
    eventId: str | None = None,
    token: str | None = None,
    gateway: ValidationGateway = Depends(get_gateway),
):
    """Check a scanned token before the check-in form is shown. Nothing is consumed."""
    res = await gateway.inspect(eventId, token)
    return to_response(res)
