import os

# must be set before wafflefiesta modules are imported
os.environ.setdefault("SESSION_SECRET", "test-session-secret")
os.environ["ADMIN_SESSION_BACKEND"] = "sql"
os.environ.setdefault("UPI_MERCHANT_ID", "wafflefiesta@okaxis")

import asyncio  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from wafflefiesta.gateway import Razorpay  # noqa: E402
from wafflefiesta.infra.sql import make_async_engine  # noqa: E402
from wafflefiesta.init_admin import run as admin_cli  # noqa: E402
from wafflefiesta.model.adminsession._sql import create_schema  # noqa: E402
from wafflefiesta.model.coupons import CouponStore  # noqa: E402
from wafflefiesta.model.orm import Base  # noqa: E402
from wafflefiesta.model.users import UserStore  # noqa: E402

RAZORPAY_KEY_ID = "rzp_test_key"
RAZORPAY_SECRET = "rzp_test_secret"
ADMIN_EMAIL = "staff@example.com"
ADMIN_PASSWORD = "waffles-for-all"


@pytest.fixture
async def db(tmp_path):
    engine, SessionAsync, gated = make_async_engine(
        f"sqlite:///{tmp_path}/coupons.db"
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await create_schema(conn)
    async with SessionAsync() as session:
        yield session, gated
    await engine.dispose()


@pytest.fixture
def store(db):
    session, gated = db
    return CouponStore(db=session, gated=gated)


@pytest.fixture
def users(db):
    session, gated = db
    return UserStore(db=session, gated=gated)


class FakeRazorpay:
    """Stands in for api.razorpay.com behind httpx.MockTransport."""

    def __init__(self):
        self.requests = []
        self.order_body = {"id": "order_TEST123", "status": "created"}
        self.status_code = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.order_body)


@pytest.fixture
def fake_razorpay():
    return FakeRazorpay()


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path}/app.db"


@pytest.fixture
def client(db_url, monkeypatch, fake_razorpay):
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setenv("RAZORPAY_KEY_ID", RAZORPAY_KEY_ID)
    monkeypatch.setenv("RAZORPAY_KEY_SECRET", RAZORPAY_SECRET)

    from wafflefiesta.server import app, get_gateway

    mock_http = httpx.AsyncClient(transport=httpx.MockTransport(fake_razorpay))
    app.dependency_overrides[get_gateway] = lambda: Razorpay(mock_http)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def admin_account(client, monkeypatch):
    # the app has created its tables by now; seed through the CLI entry
    assert asyncio.run(
        admin_cli("create", ADMIN_EMAIL, ADMIN_PASSWORD)
    ) == 0
    return ADMIN_EMAIL, ADMIN_PASSWORD


@pytest.fixture
def admin_token(client, admin_account):
    email, password = admin_account
    r = client.post("/api/admin/login",
                    json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return r.json()["token"]


@pytest.fixture
def admin_headers(admin_token):
    return {"Authorization": f"Bearer {admin_token}"}
