# qrcheckin/core/render.py
from io import BytesIO
from urllib.parse import urlencode

import qrcode
from qrcode.constants import ERROR_CORRECT_M
from qrcode.image.svg import SvgPathImage


def checkin_url(base_url: str, event_id: str, token: str, issued_at: int) -> str:
    """URL encoded into the QR image; the scanner posts event+token back."""
    return f"{base_url}?{urlencode({'event': event_id, 'token': token, 'ts': issued_at})}"


def _make(data: str, image_factory=None):
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, border=1, image_factory=image_factory)
    qr.add_data(data)
    qr.make(fit=True)
    return qr.make_image()


def render_png(data: str) -> bytes:
    img = _make(data)
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def render_svg(data: str) -> str:
    img = _make(data, image_factory=SvgPathImage)
    buf = BytesIO()
    img.save(buf)
    return buf.getvalue().decode("utf-8")
