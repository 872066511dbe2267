import re

import pytest

from wafflefiesta.errors import (
    DuplicateError, NotFoundError, StateError, UpstreamError, ValidationError,
)
from wafflefiesta.model import coupons as coupons_mod
from wafflefiesta.model.coupons import (
    classify_scan, coupon_stats, filter_coupons, generate_coupon_id,
)
from wafflefiesta.model.orm import Coupon
from wafflefiesta.qr import qr_payload

CODE_RE = re.compile(r"^WF\d{4}[A-Z0-9]{6}$")


def test_generated_codes_match_pattern():
    for _ in range(200):
        assert CODE_RE.match(generate_coupon_id())
    assert generate_coupon_id(2026).startswith("WF2026")


async def test_cash_coupon_is_verified_and_unused(store):
    c = await store.issue_cash("  Priya Singh ", "9000000000")
    assert CODE_RE.match(c.coupon_id)
    assert c.name == "Priya Singh"
    assert c.payment_type == "Cash"
    assert c.verification_status == "Verified"
    assert c.status == "Unused"
    assert c.redeemed_at is None
    assert c.transaction_id is None


async def test_upi_coupon_is_pending(store):
    c = await store.issue_upi("Asha Rao", "9812345678", "412345678901")
    assert c.payment_type == "Online"
    assert c.verification_status == "Pending"
    assert c.status == "Unused"
    assert c.transaction_id == "412345678901"


async def test_duplicate_transaction_id_rejected(store):
    await store.issue_upi("Asha Rao", "9812345678", "412345678901")
    with pytest.raises(DuplicateError):
        await store.issue_upi("Ravi Kumar", "9812345679", "412345678901")
    assert len(await store.list()) == 1


async def test_duplicate_transaction_id_caught_at_insert(store, monkeypatch):
    # a concurrent submission that slipped past the pre-check
    await store.issue_upi("Asha Rao", "9812345678", "412345678901")

    real_exists = store.transaction_exists
    calls = {"n": 0}

    async def stale_precheck(txn):
        calls["n"] += 1
        if calls["n"] == 1:
            return False
        return await real_exists(txn)
    monkeypatch.setattr(store, "transaction_exists", stale_precheck)

    with pytest.raises(DuplicateError):
        await store.issue_upi("Ravi Kumar", "9812345679", "412345678901")
    assert len(await store.list()) == 1


@pytest.mark.parametrize("name,phone", [
    ("", "9812345678"),
    ("   ", "9812345678"),
    ("x" * 101, "9812345678"),
    ("Asha", "5812345678"),
    ("Asha", "981234567"),
    ("Asha", "98123456789"),
    ("Asha", "98123abc78"),
    (123, "9812345678"),
    ("Asha", 9812345678),
    ({"first": "Asha"}, "9812345678"),
])
async def test_invalid_holder_rejected(store, name, phone):
    with pytest.raises(ValidationError):
        await store.issue_cash(name, phone)
    assert await store.list() == []


@pytest.mark.parametrize("txn", [
    "", "12345", "abc def 123", "x" * 65, 412345678901, None,
])
async def test_invalid_transaction_id_rejected(store, txn):
    with pytest.raises(ValidationError):
        await store.issue_upi("Asha Rao", "9812345678", txn)


async def test_code_collision_on_precheck_regenerates(store, monkeypatch):
    first = await store.issue_cash("Asha Rao", "9812345678")
    codes = iter([first.coupon_id, first.coupon_id, "WF2026FRESH1"])
    monkeypatch.setattr(coupons_mod, "generate_coupon_id",
                        lambda year=None: next(codes))

    c = await store.issue_cash("Ravi Kumar", "9812345679")
    assert c.coupon_id == "WF2026FRESH1"


async def test_code_collision_on_insert_regenerates(store, monkeypatch):
    # the pre-check says "free" but the unique index disagrees
    first = await store.issue_cash("Asha Rao", "9812345678")
    codes = iter([first.coupon_id, "WF2026FRESH2"])
    monkeypatch.setattr(coupons_mod, "generate_coupon_id",
                        lambda year=None: next(codes))

    real_exists = store.code_exists
    calls = {"n": 0}

    async def stale_precheck(code):
        calls["n"] += 1
        if calls["n"] == 1:
            return False
        return await real_exists(code)
    monkeypatch.setattr(store, "code_exists", stale_precheck)

    c = await store.issue_cash("Ravi Kumar", "9812345679")
    assert c.coupon_id == "WF2026FRESH2"
    assert len(await store.list()) == 2


async def test_gateway_issue_gives_up_after_bounded_attempts(
        store, monkeypatch):
    first = await store.issue_cash("Asha Rao", "9812345678")
    calls = {"n": 0}

    def always_taken(year=None):
        calls["n"] += 1
        return first.coupon_id
    monkeypatch.setattr(coupons_mod, "generate_coupon_id", always_taken)

    with pytest.raises(UpstreamError):
        await store.issue_gateway("Ravi Kumar", "9812345679", "pay_1",
                                  max_attempts=10)
    assert calls["n"] == 10
    assert len(await store.list()) == 1


async def test_gateway_issue_is_idempotent_per_payment(store):
    a = await store.issue_gateway("Asha Rao", "9812345678", "pay_1",
                                  max_attempts=10)
    b = await store.issue_gateway("Asha Rao", "9812345678", "pay_1",
                                  max_attempts=10)
    assert a.coupon_id == b.coupon_id
    assert a.verification_status == "Verified"
    assert a.payment_id == "pay_1"
    assert len(await store.list()) == 1


async def test_redeem_blocked_while_pending(store):
    c = await store.issue_upi("Asha Rao", "9812345678", "412345678901")
    with pytest.raises(StateError, match="NOT verified"):
        await store.redeem(c.coupon_id)
    again = await store.get(c.coupon_id)
    assert again.status == "Unused"
    assert again.redeemed_at is None


async def test_verify_then_redeem(store):
    c = await store.issue_upi("Asha Rao", "9812345678", "412345678901")
    verified = await store.verify(c.coupon_id)
    assert verified.verification_status == "Verified"
    assert verified.status == "Unused"

    redeemed = await store.redeem(c.coupon_id, now=1_760_000_000.0)
    assert redeemed.status == "Redeemed"
    assert redeemed.redeemed_at == 1_760_000_000.0


async def test_second_redeem_does_not_touch_timestamp(store):
    c = await store.issue_cash("Asha Rao", "9812345678")
    await store.redeem(c.coupon_id, now=1_760_000_000.0)
    with pytest.raises(StateError, match="Already Redeemed"):
        await store.redeem(c.coupon_id, now=1_760_000_999.0)
    again = await store.get(c.coupon_id)
    assert again.redeemed_at == 1_760_000_000.0


async def test_verify_keeps_redemption_state(store):
    c = await store.issue_cash("Asha Rao", "9812345678")
    await store.redeem(c.coupon_id, now=1_760_000_000.0)
    again = await store.verify(c.coupon_id)
    assert again.status == "Redeemed"
    assert again.redeemed_at == 1_760_000_000.0


async def test_unknown_coupon(store):
    with pytest.raises(NotFoundError):
        await store.verify("WF2026NOPE00")
    with pytest.raises(NotFoundError):
        await store.redeem("WF2026NOPE00")


async def test_list_is_newest_first(store):
    a = await store.issue_cash("Asha Rao", "9812345678")
    b = await store.issue_cash("Ravi Kumar", "9812345679")
    listed = [c.coupon_id for c in await store.list()]
    assert listed == [b.coupon_id, a.coupon_id]


def _coupon(code, name, payment_type="Cash", status="Unused",
            verification_status="Verified"):
    return Coupon(coupon_id=code, name=name, phone="9812345678",
                  payment_type=payment_type, status=status,
                  verification_status=verification_status, created_at=0.0)


def test_filter_by_text_and_category():
    cs = [
        _coupon("WF2026AAAAAA", "Asha Rao"),
        _coupon("WF2026BBBBBB", "Ravi Kumar", payment_type="Online",
                verification_status="Pending"),
        _coupon("WF2026CCCCCC", "Meera Asher", status="Redeemed"),
    ]
    assert [c.name for c in filter_coupons(cs, "ASH")] == \
        ["Asha Rao", "Meera Asher"]
    assert [c.coupon_id for c in filter_coupons(cs, "bbbb")] == \
        ["WF2026BBBBBB"]
    assert [c.name for c in filter_coupons(cs, "ash", "Redeemed")] == \
        ["Meera Asher"]
    assert [c.name for c in filter_coupons(cs, "", "Pending")] == \
        ["Ravi Kumar"]
    assert [c.name for c in filter_coupons(cs, "", "Online")] == \
        ["Ravi Kumar"]
    assert len(filter_coupons(cs, "", "Cash")) == 2
    assert len(filter_coupons(cs, "", "Unused")) == 2
    assert len(filter_coupons(cs)) == 3
    with pytest.raises(ValidationError):
        filter_coupons(cs, "", "Expired")


def test_stats():
    cs = [
        _coupon("WF2026AAAAAA", "Asha Rao"),
        _coupon("WF2026BBBBBB", "Ravi Kumar", payment_type="Online",
                verification_status="Pending"),
        _coupon("WF2026CCCCCC", "Meera Asher", status="Redeemed"),
    ]
    assert coupon_stats(cs) == {
        "total": 3, "pending": 1, "redeemed": 1, "online": 1, "cash": 2,
    }


async def test_scan_classification(store):
    pending = await store.issue_upi("Asha Rao", "9812345678", "412345678901")
    cash = await store.issue_cash("Ravi Kumar", "9812345679")

    res = await classify_scan(store, qr_payload(pending.coupon_id))
    assert not res.valid
    assert res.message == "Payment NOT verified yet!"
    assert res.coupon.coupon_id == pending.coupon_id

    res = await classify_scan(store, qr_payload(cash.coupon_id))
    assert res.valid

    await store.redeem(cash.coupon_id)
    res = await classify_scan(store, qr_payload(cash.coupon_id))
    assert not res.valid
    assert res.message == "Already Redeemed!"

    res = await classify_scan(store, qr_payload("WF2026ZZZZZZ"))
    assert (res.valid, res.message, res.coupon) == \
        (False, "Coupon not found", None)

    res = await classify_scan(store, "not json at all")
    assert (res.valid, res.message) == (False, "Invalid QR Code")
