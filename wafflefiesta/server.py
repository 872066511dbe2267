from __future__ import annotations

import logging
import os
from typing import Optional
from urllib.parse import urlencode

import httpx
import redis.asyncio as redis
from fastapi import Depends, FastAPI, Form, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import (
    HTMLResponse, ORJSONResponse, RedirectResponse, Response,
)
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.sessions import SessionMiddleware
from starlette.status import HTTP_303_SEE_OTHER

from . import config
from .errors import AuthError, CouponError, ValidationError
from .gateway import PaymentAdapter, Razorpay
from .infra.sql import make_async_engine
from .model.adminsession import (
    AdminSessionStore, new_store, BACKEND as ADMINSESSION_BACKEND,
)
from .model.coupons import (
    CATEGORIES, CouponStore, classify_scan, clean_holder, coupon_record,
    coupon_stats, filter_coupons, public_coupon,
)
from .model.orm import Base
from .model.users import UserStore
from .pdf import CouponPdf
from .qr import qr_data_url, qr_payload, qr_png, upi_link

logger = logging.getLogger(__name__)

HERE = os.path.dirname(os.path.abspath(__file__))
templates = Jinja2Templates(directory=os.path.join(HERE, "templates"))

app = FastAPI(
    title="Waffle Fiesta",
    default_response_class=ORJSONResponse,
)
app.mount(
    "/static",
    StaticFiles(directory=os.path.join(HERE, "static")),
    name="static",
)
app.add_middleware(SessionMiddleware, secret_key=config.session_secret())


@app.exception_handler(CouponError)
async def _coupon_error(request: Request, exc: CouponError):
    return ORJSONResponse({"error": exc.message}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def _request_error(request: Request, exc: RequestValidationError):
    return ORJSONResponse({"error": "Invalid request"}, status_code=400)


@app.exception_handler(Exception)
async def _unexpected_error(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method,
                     request.url.path)
    return ORJSONResponse({"error": "Something went wrong"}, status_code=500)


# ----------------------------
# Dependencies
# ----------------------------
async def get_db() -> AsyncSession:
    async with app.state.SessionAsync() as session:
        yield session


async def coupon_store(db: AsyncSession = Depends(get_db)) -> CouponStore:
    return CouponStore(db=db, gated=app.state.gated)


async def user_store(db: AsyncSession = Depends(get_db)) -> UserStore:
    return UserStore(db=db, gated=app.state.gated)


async def adminsessions() -> AdminSessionStore:
    ttl = config.ADMIN_SESSION_TTL_SECONDS
    if ADMINSESSION_BACKEND == "sql":
        async with app.state.SessionAsync() as session:
            yield new_store(db=session, gated=app.state.gated,
                            ttl_seconds=ttl)
    else:
        yield new_store(r=app.state.redis, ttl_seconds=ttl)


def get_gateway() -> PaymentAdapter:
    return Razorpay(app.state.http)


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _say_hello():
    config.configure_logging()
    S = "SQL" if ADMINSESSION_BACKEND == "sql" else "Redis"
    logger.info("%s is starting up (admin sessions: %s)",
                config.EVENT_NAME, S)


@app.on_event("startup")
async def _db_init():
    engine, SessionAsync, gated = make_async_engine(config.database_url())
    app.state.engine = engine
    app.state.SessionAsync = SessionAsync
    app.state.gated = gated
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        if ADMINSESSION_BACKEND == "sql":
            from .model.adminsession._sql import create_schema
            await create_schema(conn)


@app.on_event("startup")
async def _http_client_start():
    app.state.http = httpx.AsyncClient(timeout=5.0)


@app.on_event("startup")
async def _redis_start():
    if ADMINSESSION_BACKEND != "sql":
        REDIS_URL = os.getenv("REDIS_URL", "redis://127.0.0.1:6379")
        app.state.redis = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
        )


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        app.state.http = None


@app.on_event("shutdown")
async def _redis_stop():
    r = getattr(app.state, "redis", None)
    if r is not None:
        await r.aclose()
        app.state.redis = None


@app.on_event("shutdown")
async def _db_stop():
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        await engine.dispose()
        app.state.engine = None


# ----------------------------
# Admin auth
# ----------------------------
def _bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("authorization", "")
    if auth[:7].lower() == "bearer ":
        return auth[7:].strip() or None
    return None


def _safe_next(dest: Optional[str]) -> str:
    # only local paths; "//host" would leave the site
    if not dest or not dest.startswith("/") or dest.startswith("//"):
        return "/admin"
    return dest


async def current_admin(
    request: Request,
    sessions: AdminSessionStore,
    users: UserStore,
) -> Optional[str]:
    """Resolve the caller's token to an admin user id, or sign them out."""
    token = _bearer_token(request) or request.session.get("admin_token")
    user_id = await sessions.get(token)
    if user_id is not None and await users.has_role(user_id):
        return user_id
    if token:
        logger.info("rejected admin token (expired or role missing)")
    await sessions.revoke(token)
    request.session.clear()
    return None


async def require_admin(
    request: Request,
    sessions: AdminSessionStore = Depends(adminsessions),
    users: UserStore = Depends(user_store),
) -> str:
    user_id = await current_admin(request, sessions, users)
    if user_id is None:
        # preserve where we wanted to go, query string included
        dest = request.url.path
        if request.url.query:
            dest += "?" + request.url.query
        login = "/admin/login?" + urlencode({"next": dest})
        # 303 turns a rejected form POST into a GET of the login page
        code = 307 if request.method == "GET" else 303
        raise HTTPException(status_code=code, detail="redirect to login",
                            headers={"Location": login})
    return user_id


async def require_admin_api(
    request: Request,
    sessions: AdminSessionStore = Depends(adminsessions),
    users: UserStore = Depends(user_store),
) -> str:
    user_id = await current_admin(request, sessions, users)
    if user_id is None:
        raise AuthError("Admin session required")
    return user_id


async def _login(users: UserStore, sessions: AdminSessionStore,
                 email: str, password: str) -> str:
    user = await users.authenticate(email, password)
    if user is None:
        logger.info("failed admin login for %s", (email or "").strip())
        raise AuthError("Invalid credentials.")
    if not await users.has_role(user.id):
        logger.info("login without admin role: %s", user.email)
        raise AuthError("You don't have admin access")
    logger.info("admin %s logged in", user.email)
    return await sessions.create(user.id)


# ----------------------------
# Purchase page
# ----------------------------
@app.get("/", response_class=HTMLResponse)
async def purchase_page(request: Request):
    upi = None
    if config.UPI_MERCHANT_ID:
        link = upi_link(config.UPI_MERCHANT_ID, config.COUPON_PRICE)
        upi = {"link": link, "qr": qr_data_url(link)}
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "site_name": config.EVENT_NAME,
            "tagline": config.EVENT_TAGLINE,
            "price": config.COUPON_PRICE,
            "upi": upi,
        },
    )


@app.get("/healthz")
async def healthz():
    return {"ok": True}


# ----------------------------
# API: gateway checkout
# ----------------------------
@app.post("/api/orders")
async def create_order(
    payload: dict,
    gateway: PaymentAdapter = Depends(get_gateway),
):
    amount = payload.get("amount")
    name = payload.get("name")
    phone = payload.get("phone")
    if not amount or not name or not phone:
        raise ValidationError("Missing required fields")
    name, phone = clean_holder(name, phone)
    try:
        price_ok = float(amount) == config.COUPON_PRICE
    except (TypeError, ValueError):
        price_ok = False
    if isinstance(amount, bool) or not price_ok:
        raise ValidationError("Invalid amount")

    return await gateway.create_order(config.COUPON_PRICE, name, phone)


@app.post("/api/payments/verify")
async def verify_payment(
    payload: dict,
    gateway: PaymentAdapter = Depends(get_gateway),
    coupons: CouponStore = Depends(coupon_store),
):
    payment_id = payload.get("razorpay_payment_id")
    order_id = payload.get("razorpay_order_id")
    signature = payload.get("razorpay_signature")
    name = payload.get("name")
    phone = payload.get("phone")
    if not payment_id or not order_id or not signature or not name \
            or not phone:
        raise ValidationError("Missing fields")
    if not isinstance(payment_id, str) or not isinstance(order_id, str):
        raise ValidationError("Invalid payment reference")

    # raises before anything is written
    gateway.verify_signature(order_id, payment_id, signature)

    coupon = await coupons.issue_gateway(
        name, phone, payment_id,
        max_attempts=config.GATEWAY_COUPON_ATTEMPTS,
    )
    return {"coupon": public_coupon(coupon)}


# ----------------------------
# API: manual UPI
# ----------------------------
@app.post("/api/coupons/upi")
async def submit_upi_payment(
    payload: dict,
    coupons: CouponStore = Depends(coupon_store),
):
    coupon = await coupons.issue_upi(
        payload.get("name"),
        payload.get("phone"),
        payload.get("transaction_id"),
    )
    out = public_coupon(coupon)
    out["verificationStatus"] = coupon.verification_status
    return {"coupon": out}


# ----------------------------
# Coupon card: page, QR image, printable PDF
# ----------------------------
@app.get("/coupons/{coupon_id}", response_class=HTMLResponse)
async def coupon_page(
    request: Request, coupon_id: str,
    coupons: CouponStore = Depends(coupon_store),
):
    coupon = await coupons.get(coupon_id)
    return templates.TemplateResponse(
        request,
        "coupon.html",
        {
            "site_name": config.EVENT_NAME,
            "tagline": config.EVENT_TAGLINE,
            "coupon": coupon_record(coupon),
            "qr": qr_data_url(qr_payload(coupon.coupon_id)),
        },
    )


@app.get("/coupons/{coupon_id}/qr.png")
async def coupon_qr(
    coupon_id: str, coupons: CouponStore = Depends(coupon_store),
):
    coupon = await coupons.get(coupon_id)
    return Response(qr_png(qr_payload(coupon.coupon_id)),
                    media_type="image/png")


@app.get("/coupons/{coupon_id}/pdf")
async def coupon_pdf(
    coupon_id: str, coupons: CouponStore = Depends(coupon_store),
):
    coupon = await coupons.get(coupon_id)
    doc = CouponPdf(coupon)
    return Response(
        doc.render(),
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{doc.filename}"'
        },
    )


# ----------------------------
# Admin pages
# ----------------------------
@app.get("/admin/login", response_class=HTMLResponse)
async def admin_login_get(request: Request, next: str | None = "/admin"):
    return templates.TemplateResponse(
        request,
        "login.html",
        {"next": _safe_next(next), "error": None,
         "site_name": config.EVENT_NAME},
    )


@app.post("/admin/login", response_class=HTMLResponse)
async def admin_login_post(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    next: str = Form("/admin"),
    users: UserStore = Depends(user_store),
    sessions: AdminSessionStore = Depends(adminsessions),
):
    try:
        token = await _login(users, sessions, email, password)
    except AuthError as e:
        request.session.clear()
        return templates.TemplateResponse(
            request,
            "login.html",
            {"next": _safe_next(next), "error": e.message,
             "site_name": config.EVENT_NAME},
            status_code=401,
        )
    request.session["admin_token"] = token
    return RedirectResponse(url=_safe_next(next),
                            status_code=HTTP_303_SEE_OTHER)


@app.get("/admin/logout")
async def admin_logout(
    request: Request,
    sessions: AdminSessionStore = Depends(adminsessions),
):
    await sessions.revoke(request.session.get("admin_token"))
    request.session.clear()
    return RedirectResponse(url="/", status_code=HTTP_303_SEE_OTHER)


def _back_to_dashboard(**params) -> RedirectResponse:
    query = urlencode({k: v for k, v in params.items() if v})
    url = "/admin" + (f"?{query}" if query else "")
    return RedirectResponse(url=url, status_code=HTTP_303_SEE_OTHER)


@app.get("/admin", response_class=HTMLResponse)
async def admin_page(
    request: Request,
    q: str = "",
    filter_: str = Query("all", alias="filter"),
    msg: Optional[str] = None,
    error: Optional[str] = None,
    issued: Optional[str] = None,
    admin: str = Depends(require_admin),
    coupons: CouponStore = Depends(coupon_store),
):
    if filter_ not in CATEGORIES:
        filter_ = "all"
    everything = await coupons.list()
    shown = filter_coupons(everything, q, filter_)
    issued_coupon = await coupons.find(issued) if issued else None
    return templates.TemplateResponse(
        request,
        "admin.html",
        {
            "site_name": config.EVENT_NAME,
            "stats": coupon_stats(everything),
            "coupons": [coupon_record(c) for c in shown],
            "categories": list(CATEGORIES),
            "q": q,
            "filter": filter_,
            "msg": msg,
            "error": error,
            "issued": coupon_record(issued_coupon) if issued_coupon else None,
        },
    )


@app.post("/admin/coupons")
async def admin_issue_cash_form(
    name: str = Form(""),
    phone: str = Form(""),
    admin: str = Depends(require_admin),
    coupons: CouponStore = Depends(coupon_store),
):
    try:
        coupon = await coupons.issue_cash(name, phone)
    except CouponError as e:
        return _back_to_dashboard(error=e.message)
    return _back_to_dashboard(
        msg=f"Coupon {coupon.coupon_id} created", issued=coupon.coupon_id
    )


@app.post("/admin/coupons/{coupon_id}/verify")
async def admin_verify_form(
    coupon_id: str,
    admin: str = Depends(require_admin),
    coupons: CouponStore = Depends(coupon_store),
):
    try:
        await coupons.verify(coupon_id)
    except CouponError as e:
        return _back_to_dashboard(error=e.message)
    return _back_to_dashboard(msg=f"Payment for {coupon_id} verified")


@app.post("/admin/coupons/{coupon_id}/redeem")
async def admin_redeem_form(
    coupon_id: str,
    admin: str = Depends(require_admin),
    coupons: CouponStore = Depends(coupon_store),
):
    try:
        await coupons.redeem(coupon_id)
    except CouponError as e:
        return _back_to_dashboard(error=e.message)
    return _back_to_dashboard(msg=f"Coupon {coupon_id} marked as redeemed")


# ----------------------------
# Admin JSON API (Bearer token or the dashboard's cookie session)
# ----------------------------
@app.post("/api/admin/login")
async def api_admin_login(
    payload: dict,
    users: UserStore = Depends(user_store),
    sessions: AdminSessionStore = Depends(adminsessions),
):
    token = await _login(users, sessions, payload.get("email", ""),
                         payload.get("password", ""))
    return {"token": token}


@app.post("/api/admin/logout")
async def api_admin_logout(
    request: Request,
    sessions: AdminSessionStore = Depends(adminsessions),
):
    await sessions.revoke(
        _bearer_token(request) or request.session.get("admin_token")
    )
    request.session.clear()
    return {"ok": True}


@app.get("/api/admin/coupons")
async def api_admin_coupons(
    q: str = "",
    filter_: str = Query("all", alias="filter"),
    admin: str = Depends(require_admin_api),
    coupons: CouponStore = Depends(coupon_store),
):
    everything = await coupons.list()
    shown = filter_coupons(everything, q, filter_)
    return {
        "items": [coupon_record(c) for c in shown],
        "stats": coupon_stats(everything),
    }


@app.post("/api/admin/coupons")
async def api_admin_issue_cash(
    payload: dict,
    admin: str = Depends(require_admin_api),
    coupons: CouponStore = Depends(coupon_store),
):
    coupon = await coupons.issue_cash(payload.get("name"),
                                      payload.get("phone"))
    return {"coupon": coupon_record(coupon)}


@app.post("/api/admin/coupons/{coupon_id}/verify")
async def api_admin_verify(
    coupon_id: str,
    admin: str = Depends(require_admin_api),
    coupons: CouponStore = Depends(coupon_store),
):
    return {"coupon": coupon_record(await coupons.verify(coupon_id))}


@app.post("/api/admin/coupons/{coupon_id}/redeem")
async def api_admin_redeem(
    coupon_id: str,
    admin: str = Depends(require_admin_api),
    coupons: CouponStore = Depends(coupon_store),
):
    return {"coupon": coupon_record(await coupons.redeem(coupon_id))}


@app.post("/api/admin/scan")
async def api_admin_scan(
    payload: dict,
    admin: str = Depends(require_admin_api),
    coupons: CouponStore = Depends(coupon_store),
):
    result = await classify_scan(coupons, payload.get("text", ""))
    return result.as_dict()
