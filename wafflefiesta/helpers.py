import time
import re
from datetime import datetime, timezone
from typing import Optional


# ----------------------------
# Helpers
# ----------------------------
PHONE_RE = re.compile(r"^[6-9]\d{9}$")
TXN_RE = re.compile(r"^[A-Za-z0-9]{6,64}$")
NAME_MAX_LEN = 100


def now_ts() -> float:
    return time.time()


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def current_year() -> int:
    return datetime.now(timezone.utc).year


def is_valid_phone(phone: Optional[str]) -> bool:
    if not phone:
        return False
    # 10 digits, Indian mobile prefix 6-9
    return PHONE_RE.match(phone.strip()) is not None


def is_valid_transaction_id(txn: Optional[str]) -> bool:
    if not txn:
        return False
    return TXN_RE.match(txn.strip()) is not None

