from abc import ABC, abstractmethod
from typing import Optional, TypedDict
import hashlib
import hmac
import logging
import time

import httpx

from .config import razorpay_credentials
from .errors import SignatureError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)

RAZORPAY_ORDERS_URL = "https://api.razorpay.com/v1/orders"


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class CreateOrderResult(TypedDict):
    orderId: str
    razorpayKeyId: str


class PaymentAdapter(ABC):
    @abstractmethod
    async def create_order(
            self, amount: int, name: str, phone: str
    ) -> CreateOrderResult: ...

    # raises SignatureError on mismatch
    @abstractmethod
    def verify_signature(
            self, order_id: str, payment_id: str, signature: str
    ) -> None: ...


def payment_signature(secret: str, order_id: str, payment_id: str) -> str:
    """Lowercase hex HMAC-SHA256 of ``order_id|payment_id``."""
    msg = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), msg, hashlib.sha256).hexdigest()


# ----------------------------
# Razorpay implementation
# ----------------------------
class Razorpay(PaymentAdapter):

    def __init__(
        self,
        http: httpx.AsyncClient,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        orders_url: str = RAZORPAY_ORDERS_URL,
    ) -> None:
        self.http = http
        self._key_id = key_id
        self._key_secret = key_secret
        self.orders_url = orders_url

    def credentials(self) -> tuple[str, str]:
        # explicit credentials win; otherwise read the environment per call
        # so a missing secret fails the request, not the process
        if self._key_id and self._key_secret:
            return self._key_id, self._key_secret
        return razorpay_credentials()

    async def create_order(
            self, amount: int, name: str, phone: str
    ) -> CreateOrderResult:
        if not amount or not name or not phone:
            raise ValidationError("Missing required fields")
        try:
            amount = int(amount)
        except (TypeError, ValueError):
            raise ValidationError("Invalid amount")
        key_id, key_secret = self.credentials()

        try:
            r = await self.http.post(
                self.orders_url,
                auth=(key_id, key_secret),
                json={
                    "amount": amount * 100,  # paise
                    "currency": "INR",
                    "receipt": f"waffle_{int(time.time() * 1000)}",
                    "notes": {"name": name, "phone": phone},
                },
            )
            order = r.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("razorpay order creation failed: %s", e)
            raise UpstreamError("Failed to create order") from e

        order_id = order.get("id") if isinstance(order, dict) else None
        if not order_id:
            logger.error(
                "razorpay returned no order id (HTTP %s)", r.status_code
            )
            raise UpstreamError("Failed to create order")

        logger.info("created razorpay order %s", order_id)
        return {"orderId": order_id, "razorpayKeyId": key_id}

    def verify_signature(
            self, order_id: str, payment_id: str, signature: str
    ) -> None:
        _, key_secret = self.credentials()
        expected = payment_signature(key_secret, order_id, payment_id)
        # a non-string signature from the JSON body is a mismatch
        ok = isinstance(signature, str) and signature and \
            hmac.compare_digest(expected.encode(), signature.encode())
        if not ok:
            logger.warning(
                "signature mismatch for order %s payment %s",
                order_id, payment_id,
            )
            raise SignatureError()
