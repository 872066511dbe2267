"""
Coupon lifecycle: issuance, lookup, admin verify/redeem, scan classification.

All uniqueness guarantees rest on the database: the existence checks below
are a best-effort pre-check only, and an insert-time IntegrityError is what
decides whether a code (or transaction id) is taken.
"""
from __future__ import annotations

import logging
import secrets
import string
import uuid
from dataclasses import dataclass
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import DuplicateError, NotFoundError, StateError
from ..errors import UpstreamError, ValidationError
from ..helpers import (
    NAME_MAX_LEN, current_year, is_valid_phone, is_valid_transaction_id,
    now_ts, to_iso,
)
from ..infra.sql import Gated
from ..qr import parse_qr_payload
from .orm import (
    Coupon, PAYMENT_CASH, PAYMENT_ONLINE, STATUS_REDEEMED, STATUS_UNUSED,
    VERIFICATION_PENDING, VERIFICATION_VERIFIED,
)

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_RANDOM_LEN = 6

# category -> (column, value); "all" matches everything
CATEGORIES = {
    "all": None,
    "Unused": ("status", STATUS_UNUSED),
    "Redeemed": ("status", STATUS_REDEEMED),
    "Online": ("payment_type", PAYMENT_ONLINE),
    "Cash": ("payment_type", PAYMENT_CASH),
    "Pending": ("verification_status", VERIFICATION_PENDING),
    "Verified": ("verification_status", VERIFICATION_VERIFIED),
}


def generate_coupon_id(year: Optional[int] = None) -> str:
    year = current_year() if year is None else year
    rand = "".join(
        secrets.choice(CODE_ALPHABET) for _ in range(CODE_RANDOM_LEN)
    )
    return f"WF{year:04d}{rand}"


def clean_holder(name: Optional[str], phone: Optional[str]) -> tuple[str, str]:
    if not isinstance(name, (str, type(None))):
        raise ValidationError("Name is required")
    if not isinstance(phone, (str, type(None))):
        raise ValidationError("Enter a valid 10-digit Indian phone number")
    name = (name or "").strip()
    phone = (phone or "").strip()
    if not name:
        raise ValidationError("Name is required")
    if len(name) > NAME_MAX_LEN:
        raise ValidationError(
            f"Name must be at most {NAME_MAX_LEN} characters"
        )
    if not is_valid_phone(phone):
        raise ValidationError("Enter a valid 10-digit Indian phone number")
    return name, phone


def clean_transaction_id(txn: Optional[str]) -> str:
    txn = txn.strip() if isinstance(txn, str) else ""
    if not is_valid_transaction_id(txn):
        raise ValidationError("Enter the UPI transaction ID from your app")
    return txn


def public_coupon(c: Coupon) -> dict:
    return {
        "couponId": c.coupon_id,
        "name": c.name,
        "phone": c.phone,
        "paymentType": c.payment_type,
        "createdAt": to_iso(c.created_at),
    }


def coupon_record(c: Coupon) -> dict:
    return {
        "id": c.id,
        "name": c.name,
        "phone": c.phone,
        "coupon_id": c.coupon_id,
        "payment_id": c.payment_id,
        "payment_type": c.payment_type,
        "status": c.status,
        "verification_status": c.verification_status,
        "transaction_id": c.transaction_id,
        "redeemed_at": to_iso(c.redeemed_at),
        "created_at": to_iso(c.created_at),
    }


def filter_coupons(
    coupons: Iterable[Coupon], search: str = "", category: str = "all"
) -> List[Coupon]:
    if category not in CATEGORIES:
        raise ValidationError(f"Unknown filter: {category}")
    needle = (search or "").strip().lower()
    crit = CATEGORIES[category]
    out = []
    for c in coupons:
        if needle and needle not in c.coupon_id.lower() \
                and needle not in c.name.lower():
            continue
        if crit is not None and getattr(c, crit[0]) != crit[1]:
            continue
        out.append(c)
    return out


def coupon_stats(coupons: Iterable[Coupon]) -> dict:
    stats = {"total": 0, "pending": 0, "redeemed": 0, "online": 0, "cash": 0}
    for c in coupons:
        stats["total"] += 1
        if c.verification_status == VERIFICATION_PENDING:
            stats["pending"] += 1
        if c.status == STATUS_REDEEMED:
            stats["redeemed"] += 1
        if c.payment_type == PAYMENT_ONLINE:
            stats["online"] += 1
        else:
            stats["cash"] += 1
    return stats


@dataclass
class ScanResult:
    valid: bool
    message: str
    coupon: Optional[Coupon] = None

    def as_dict(self) -> dict:
        return {
            "valid": self.valid,
            "message": self.message,
            "coupon": coupon_record(self.coupon) if self.coupon else None,
        }


class CouponStore:
    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    # ---- reads
    async def find(self, coupon_id: str) -> Optional[Coupon]:
        async with self.gated():
            async with self.db.begin():
                result = await self.db.execute(
                    select(Coupon)
                    .where(Coupon.coupon_id == coupon_id)
                    .execution_options(populate_existing=True)
                )
                return result.scalars().first()

    async def get(self, coupon_id: str) -> Coupon:
        coupon = await self.find(coupon_id)
        if coupon is None:
            raise NotFoundError()
        return coupon

    async def list(self) -> List[Coupon]:
        async with self.gated():
            async with self.db.begin():
                result = await self.db.execute(
                    select(Coupon)
                    .order_by(Coupon.created_at.desc())
                    .execution_options(populate_existing=True)
                )
                return list(result.scalars().all())

    async def code_exists(self, coupon_id: str) -> bool:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(
                    select(Coupon.id).where(Coupon.coupon_id == coupon_id)
                )).first()
        return row is not None

    async def transaction_exists(self, transaction_id: str) -> bool:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(
                    select(Coupon.id)
                    .where(Coupon.transaction_id == transaction_id)
                )).first()
        return row is not None

    async def find_by_payment(self, payment_id: str) -> Optional[Coupon]:
        async with self.gated():
            async with self.db.begin():
                result = await self.db.execute(
                    select(Coupon).where(Coupon.payment_id == payment_id)
                )
                return result.scalars().first()

    # ---- issuance
    async def issue(
        self,
        *,
        name: str,
        phone: str,
        payment_type: str,
        verification_status: str,
        payment_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
        max_attempts: Optional[int] = None,
    ) -> Coupon:
        """Insert a new coupon under a freshly generated unique code.

        ``max_attempts=None`` keeps generating until a free code is found.
        """
        name, phone = clean_holder(name, phone)
        attempts = 0
        while max_attempts is None or attempts < max_attempts:
            attempts += 1
            code = generate_coupon_id()
            if await self.code_exists(code):
                logger.info("coupon code %s already taken, regenerating", code)
                continue

            coupon = Coupon(
                id=uuid.uuid4().hex,
                name=name,
                phone=phone,
                coupon_id=code,
                payment_id=payment_id,
                payment_type=payment_type,
                status=STATUS_UNUSED,
                verification_status=verification_status,
                transaction_id=transaction_id,
                created_at=now_ts(),
            )
            try:
                async with self.gated():
                    async with self.db.begin():
                        self.db.add(coupon)
            except IntegrityError:
                # the transaction is already rolled back here; find out
                # which unique constraint fired
                if await self.code_exists(code):
                    logger.warning(
                        "coupon code %s collided on insert, retrying", code
                    )
                    continue
                if transaction_id and \
                        await self.transaction_exists(transaction_id):
                    raise DuplicateError(
                        "This transaction ID has already been used"
                    )
                if payment_id and \
                        await self.find_by_payment(payment_id) is not None:
                    raise DuplicateError("This payment was already fulfilled")
                raise

            logger.info(
                "issued coupon %s (%s, %s)",
                code, payment_type, verification_status,
            )
            return coupon

        logger.error("gave up allocating a coupon code after %d attempts",
                     attempts)
        raise UpstreamError("Failed to create coupon")

    async def issue_cash(self, name: str, phone: str) -> Coupon:
        return await self.issue(
            name=name,
            phone=phone,
            payment_type=PAYMENT_CASH,
            verification_status=VERIFICATION_VERIFIED,
        )

    async def issue_upi(
        self, name: str, phone: str, transaction_id: str
    ) -> Coupon:
        name, phone = clean_holder(name, phone)
        txn = clean_transaction_id(transaction_id)
        if await self.transaction_exists(txn):
            raise DuplicateError("This transaction ID has already been used")
        return await self.issue(
            name=name,
            phone=phone,
            payment_type=PAYMENT_ONLINE,
            verification_status=VERIFICATION_PENDING,
            transaction_id=txn,
        )

    async def issue_gateway(
        self, name: str, phone: str, payment_id: str, max_attempts: int
    ) -> Coupon:
        # a replayed callback for the same payment gets the same coupon
        existing = await self.find_by_payment(payment_id)
        if existing is not None:
            logger.info("payment %s already fulfilled as %s",
                        payment_id, existing.coupon_id)
            return existing
        try:
            return await self.issue(
                name=name[:NAME_MAX_LEN] if isinstance(name, str) else name,
                phone=phone,
                payment_type=PAYMENT_ONLINE,
                verification_status=VERIFICATION_VERIFIED,
                payment_id=payment_id,
                max_attempts=max_attempts,
            )
        except DuplicateError:
            existing = await self.find_by_payment(payment_id)
            if existing is None:
                raise
            return existing

    # ---- admin transitions
    async def verify(self, coupon_id: str) -> Coupon:
        async with self.gated():
            async with self.db.begin():
                result = await self.db.execute(
                    update(Coupon)
                    .where(Coupon.coupon_id == coupon_id)
                    .values(verification_status=VERIFICATION_VERIFIED)
                )
        if result.rowcount == 0:
            raise NotFoundError()
        logger.info("verified payment for coupon %s", coupon_id)
        return await self.get(coupon_id)

    async def redeem(
        self, coupon_id: str, now: Optional[float] = None
    ) -> Coupon:
        ts = now_ts() if now is None else now
        async with self.gated():
            async with self.db.begin():
                result = await self.db.execute(
                    update(Coupon)
                    .where(
                        Coupon.coupon_id == coupon_id,
                        Coupon.status == STATUS_UNUSED,
                        Coupon.verification_status == VERIFICATION_VERIFIED,
                    )
                    .values(status=STATUS_REDEEMED, redeemed_at=ts)
                )
        if result.rowcount == 1:
            logger.info("redeemed coupon %s", coupon_id)
            return await self.get(coupon_id)

        coupon = await self.get(coupon_id)
        if coupon.verification_status == VERIFICATION_PENDING:
            raise StateError("Payment NOT verified yet!")
        raise StateError("Already Redeemed!")


async def classify_scan(store: CouponStore, text: str) -> ScanResult:
    code = parse_qr_payload(text)
    if not code:
        return ScanResult(valid=False, message="Invalid QR Code")
    coupon = await store.find(code)
    if coupon is None:
        return ScanResult(valid=False, message="Coupon not found")
    if coupon.verification_status == VERIFICATION_PENDING:
        return ScanResult(False, "Payment NOT verified yet!", coupon)
    if coupon.status == STATUS_REDEEMED:
        return ScanResult(False, "Already Redeemed!", coupon)
    return ScanResult(True, "Valid - Verified & Unused", coupon)
