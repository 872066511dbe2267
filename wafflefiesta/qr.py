import base64
import io
import json
from typing import Optional
from urllib.parse import urlencode

import qrcode
from qrcode.constants import ERROR_CORRECT_H

UPI_PAYEE_NAME = "WaffleFiesta"


def qr_payload(coupon_id: str) -> str:
    return json.dumps({"couponId": coupon_id})


def parse_qr_payload(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    try:
        data = json.loads(text)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    code = data.get("couponId")
    if not isinstance(code, str) or not code.strip():
        return None
    return code.strip()


def upi_link(merchant_id: str, amount: int) -> str:
    query = urlencode(
        {"pa": merchant_id, "pn": UPI_PAYEE_NAME, "am": amount, "cu": "INR"},
        safe="@",
    )
    return f"upi://pay?{query}"


def qr_png(data: str, box_size: int = 10) -> bytes:
    qr = qrcode.QRCode(
        version=None,
        error_correction=ERROR_CORRECT_H,
        box_size=box_size,
        border=4,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf)
    return buf.getvalue()


def qr_data_url(data: str) -> str:
    encoded = base64.b64encode(qr_png(data)).decode()
    return f"data:image/png;base64,{encoded}"
