from __future__ import annotations
import logging
import os
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.responses import HTMLResponse, RedirectResponse, ORJSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.status import HTTP_303_SEE_OTHER

from . import auth, gateway as gw, reconcile, storage
from .auth import RequestContext, COOKIE_NAME, SESSION_TTL_SECONDS
from .catalog import COURSE_CATALOG, WORKSHOP_SLOTS, get_course
from .errors import (
    AuthError, InvalidRequest, MissingFields, MuniqError, PaymentNotFound,
    RegistrationNotFound, UnknownDatabaseError,
)
from .gateway import PaymentAdapter, MockGateway, make_receipt
from .helpers import is_valid_email, now_ms, to_paise
from .infra.sql import make_async_engine
from .model import Base, Store
from .model.store import payment_as_dict, registration_as_dict

# ----------------------------
# Config & Constants
# ----------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./muniq.db")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SITE_NAME = "MUNIQ by AJ"

logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
log = logging.getLogger(__name__)

BASE_DIR = Path(__file__).parent
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))

engine, SessionAsync = make_async_engine(DATABASE_URL)


async def get_db() -> AsyncSession:
    async with SessionAsync() as session:
        yield session


async def get_store(db: AsyncSession = Depends(get_db)) -> Store:
    return Store(db)


def get_gateway(request: Request) -> PaymentAdapter:
    return request.app.state.gateway


def get_storage(request: Request) -> storage.ScreenshotStorage:
    return request.app.state.storage


docs_on = ENVIRONMENT != "production"
app = FastAPI(
    title="MUNIQ",
    default_response_class=ORJSONResponse,
    docs_url="/docs" if docs_on else None,
    redoc_url="/redoc" if docs_on else None,
    openapi_url="/openapi.json" if docs_on else None,
)

if storage.BACKEND == "local":
    upload_dir = Path(os.getenv("SCREENSHOT_DIR", "./uploads"))
    upload_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=upload_dir), name="uploads")


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _say_hello():
    log.info("MUNIQ is starting up (gateway=%s, screenshots=%s, env=%s)",
             gw.BACKEND, storage.BACKEND, ENVIRONMENT)
    if not auth.ADMIN_PASSWORD:
        log.warning("ADMIN_PASSWORD is not set; admin login is disabled")


@app.on_event("startup")
async def _db_init():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@app.on_event("startup")
async def _backends_start():
    app.state.gateway = gw.new_gateway()
    app.state.storage = storage.new_storage()


@app.on_event("shutdown")
async def _backends_stop():
    g = getattr(app.state, "gateway", None)
    if g is not None:
        await g.aclose()
        app.state.gateway = None
    await engine.dispose()


# ----------------------------
# Error responses
# ----------------------------
def fail(status_code: int, message: str) -> ORJSONResponse:
    return ORJSONResponse(
        {"success": False, "message": message}, status_code=status_code
    )


@app.exception_handler(MuniqError)
async def _muniq_error(request: Request, exc: MuniqError):
    return fail(exc.status_code, exc.message)


@app.exception_handler(SQLAlchemyError)
async def _database_error(request: Request, exc: SQLAlchemyError):
    log.exception("database error on %s %s", request.method, request.url.path)
    err = UnknownDatabaseError()
    return fail(err.status_code, err.message)


@app.exception_handler(Exception)
async def _unexpected_error(request: Request, exc: Exception):
    log.exception("unhandled error on %s %s", request.method, request.url.path)
    return fail(500, MuniqError.message)


# ----------------------------
# Helpers
# ----------------------------
def require_admin(request: Request) -> dict:
    """Dependency for admin API routes: bearer header or cookie."""
    return auth.verify_token(
        auth.token_from_request(request), RequestContext.from_request(request)
    )


def admin_claims(request: Request) -> Optional[dict]:
    """Page variant: cookie only, None instead of 401."""
    try:
        return auth.verify_token(
            request.cookies.get(COOKIE_NAME),
            RequestContext.from_request(request),
        )
    except AuthError:
        return None


def login_redirect(request: Request) -> RedirectResponse:
    dest = request.url.path
    return RedirectResponse(url=f"/admin/login?next={dest}", status_code=307)


def safe_next(next: Optional[str]) -> str:
    # only ever bounce back into the admin area
    if next and next.startswith("/admin") and not next.startswith("//"):
        return next
    return "/admin"


def set_token_cookie(response, token: str) -> None:
    response.set_cookie(
        COOKIE_NAME, token,
        max_age=SESSION_TTL_SECONDS,
        httponly=True,
        samesite="lax",
        secure=ENVIRONMENT == "production",
        path="/",
    )


# ----------------------------
# Landing page & catalog
# ----------------------------
@app.get("/", response_class=HTMLResponse)
async def landing_page(request: Request):
    return templates.TemplateResponse(
        request,
        "landing.html",
        {
            "site_name": SITE_NAME,
            "courses": COURSE_CATALOG,
            "slots": WORKSHOP_SLOTS,
        },
    )


@app.get("/api/courses")
async def list_courses():
    return {
        "success": True,
        "data": {"courses": COURSE_CATALOG, "slots": list(WORKSHOP_SLOTS)},
    }


# ----------------------------
# API: registration
# ----------------------------
REQUIRED_REGISTRATION_FIELDS = (
    "first_name", "last_name", "email", "standard", "mun_experience",
    "course_id",
)
OPTIONAL_REGISTRATION_FIELDS = (
    "contact", "dob", "institution", "workshop_slot",
)
# the browser form posts camelCase names
FIELD_ALIASES = {
    "firstName": "first_name",
    "lastName": "last_name",
    "munExperience": "mun_experience",
    "workshopSlot": "workshop_slot",
    "courseId": "course_id",
}


def _registration_fields(payload: dict) -> dict:
    data = {}
    for key, value in payload.items():
        key = FIELD_ALIASES.get(key, key)
        if isinstance(value, str):
            value = value.strip()
        data[key] = value

    missing = [f for f in REQUIRED_REGISTRATION_FIELDS if not data.get(f)]
    if missing:
        raise MissingFields(missing)
    if not isinstance(data["email"], str) or not is_valid_email(data["email"]):
        raise InvalidRequest("Please enter a valid email address")

    course = get_course(data["course_id"])
    if course is None:
        raise InvalidRequest("Unknown course selected")
    slot = data.get("workshop_slot") or None
    if slot is not None and slot not in WORKSHOP_SLOTS:
        raise InvalidRequest("Unknown workshop slot")

    fields = {f: data[f] for f in REQUIRED_REGISTRATION_FIELDS}
    for f in OPTIONAL_REGISTRATION_FIELDS:
        fields[f] = data.get(f) or None
    fields["email"] = fields["email"].lower()
    fields["course_name"] = course["name"]
    fields["course_price"] = course["price"]
    return fields


@app.post("/api/register")
async def create_registration(
    payload: dict,
    store: Store = Depends(get_store),
):
    fields = _registration_fields(payload)
    registration = await store.create_registration(fields)
    log.info("registration %s created for course %s",
             registration.id, registration.course_id)
    return {
        "success": True,
        "message": "Registration saved successfully",
        "data": registration_as_dict(registration),
    }


# ----------------------------
# API: payments
# ----------------------------
@app.post("/api/payment/create-order")
async def create_order(
    payload: dict,
    store: Store = Depends(get_store),
    gateway: PaymentAdapter = Depends(get_gateway),
):
    amount = payload.get("amount")
    registration_id = payload.get("registrationId")
    if not amount or not registration_id:
        raise MissingFields(
            message="Amount and registration ID are required"
        )
    try:
        paise = to_paise(amount)
    except (TypeError, ValueError, OverflowError):
        raise InvalidRequest("amount must be a number")
    if paise <= 0:
        raise InvalidRequest("amount must be positive")

    registration = await store.get_registration(registration_id)
    if registration is None:
        raise RegistrationNotFound()

    currency = payload.get("currency") or "INR"
    customer = payload.get("customerDetails") or {}
    if not isinstance(customer, dict):
        raise InvalidRequest("customerDetails must be an object")
    order = await gateway.create_order(
        paise,
        currency,
        make_receipt(registration_id, now_ms()),
        notes={
            "registration_id": registration_id,
            "customer_name": customer.get("name") or "MUNIQ Participant",
            "customer_email": customer.get("email") or "",
            "customer_contact": customer.get("contact") or "",
            "course": registration.course_name,
        },
    )
    log.info("gateway order %s created for registration %s",
             order["id"], registration_id)
    return {
        "success": True,
        "message": "Order created successfully",
        "data": {
            "orderId": order["id"],
            "amount": order["amount"],
            "currency": order["currency"],
            "registrationId": registration_id,
            "keyId": gateway.key_id,
        },
    }


@app.post("/api/payment/verify")
async def verify_payment(
    payload: dict,
    store: Store = Depends(get_store),
    gateway: PaymentAdapter = Depends(get_gateway),
):
    payment = await reconcile.verify_gateway_payment(
        store,
        gateway,
        order_id=payload.get("razorpay_order_id"),
        payment_id=payload.get("razorpay_payment_id"),
        signature=payload.get("razorpay_signature"),
        registration_id=payload.get("registrationId"),
        course_details=payload.get("courseDetails"),
    )
    data = payment_as_dict(payment)
    data["verified"] = True
    return {
        "success": True,
        "message": "Payment verified and saved successfully",
        "data": data,
    }


@app.post("/api/payment/upload-screenshot")
async def upload_screenshot(
    screenshot: Optional[UploadFile] = File(None),
    registrationId: Optional[str] = Form(None),
    store: Store = Depends(get_store),
    shots: storage.ScreenshotStorage = Depends(get_storage),
):
    data = None
    filename = content_type = None
    if screenshot is not None:
        filename = screenshot.filename
        content_type = screenshot.content_type
        if filename and registrationId and screenshot.size is not None:
            # reject oversized uploads before reading them into memory
            reconcile.check_screenshot(content_type, screenshot.size)
        data = await screenshot.read()
    payment = await reconcile.accept_screenshot_payment(
        store, shots, filename, content_type, data, registrationId
    )
    return {
        "success": True,
        "message": "Payment screenshot uploaded and payment confirmed "
                   "successfully",
        "data": payment_as_dict(payment),
    }


@app.get("/api/payment")
async def get_payment(
    registrationId: Optional[str] = None,
    paymentId: Optional[str] = None,
    store: Store = Depends(get_store),
):
    if not registrationId and not paymentId:
        raise InvalidRequest("Either registrationId or paymentId is required")
    if paymentId:
        payment = await store.get_payment(paymentId)
    else:
        payment = await store.get_payment_by_registration(registrationId)
    if payment is None:
        raise PaymentNotFound()
    return {"success": True, "data": payment_as_dict(payment)}


# ----------------------------
# API: admin
# ----------------------------
@app.post("/api/admin/auth")
async def admin_auth(payload: dict, request: Request):
    token = auth.issue_token(
        payload.get("password") or "", RequestContext.from_request(request)
    )
    response = ORJSONResponse({
        "success": True,
        "message": "Authentication successful",
        "token": token,
    })
    set_token_cookie(response, token)
    return response


@app.get("/api/admin/auth")
async def admin_auth_check(request: Request):
    header = request.headers.get("authorization") or ""
    if not header.startswith("Bearer "):
        return fail(401, "No token provided")
    claims = auth.verify_token(
        header[len("Bearer "):].strip(), RequestContext.from_request(request)
    )
    return {
        "success": True,
        "message": "Token valid",
        "remaining": auth.remaining_seconds(claims),
    }


ADMIN_DATA_ACTIONS = ("connection", "registrations", "payments")


@app.get("/api/admin/data")
async def admin_data(
    action: str = "connection",
    limit: int = 10000,
    claims: dict = Depends(require_admin),
    store: Store = Depends(get_store),
):
    if action == "connection":
        await store.ping()
        return {
            "success": True,
            "message": "Database connection successful",
            "timestamp": now_ms(),
        }
    if action == "registrations":
        items = await store.list_registrations(limit=limit)
        return {
            "success": True,
            "message": "Registrations fetched successfully",
            "count": len(items),
            "data": items,
        }
    if action == "payments":
        items = await store.list_payments(limit=limit)
        return {
            "success": True,
            "message": "Payments fetched successfully",
            "count": len(items),
            "data": items,
        }
    raise InvalidRequest(
        "Invalid action. Use: " + ", ".join(ADMIN_DATA_ACTIONS)
    )


@app.post("/api/admin/payments")
async def admin_record_payment(
    payload: dict,
    claims: dict = Depends(require_admin),
    store: Store = Depends(get_store),
):
    payment = await reconcile.record_manual_payment(
        store,
        registration_id=payload.get("registrationId"),
        amount=payload.get("amount"),
        currency=payload.get("currency"),
        payment_id=payload.get("paymentId"),
    )
    return {
        "success": True,
        "message": "Payment saved successfully",
        "data": payment_as_dict(payment),
    }


# ----------------------------
# Admin pages
# ----------------------------
@app.get("/admin/login", response_class=HTMLResponse)
async def admin_login_get(request: Request, next: str | None = "/admin"):
    return templates.TemplateResponse(
        request,
        "login.html",
        {"site_name": SITE_NAME, "next": safe_next(next), "error": None},
    )


@app.post("/admin/login", response_class=HTMLResponse)
async def admin_login_post(
    request: Request,
    password: str = Form(""),
    next: str = Form("/admin"),
):
    try:
        token = auth.issue_token(password, RequestContext.from_request(request))
    except MuniqError as e:
        return templates.TemplateResponse(
            request,
            "login.html",
            {"site_name": SITE_NAME, "next": safe_next(next),
             "error": e.message},
            status_code=e.status_code,
        )
    response = RedirectResponse(
        url=safe_next(next), status_code=HTTP_303_SEE_OTHER
    )
    set_token_cookie(response, token)
    return response


@app.get("/admin/logout")
async def admin_logout():
    # the token itself stays valid until it expires
    response = RedirectResponse(
        url="/admin/login", status_code=HTTP_303_SEE_OTHER
    )
    response.delete_cookie(COOKIE_NAME, path="/")
    return response


@app.get("/admin", response_class=HTMLResponse)
async def admin_page(
    request: Request,
    store: Store = Depends(get_store),
):
    claims = admin_claims(request)
    if claims is None:
        return login_redirect(request)

    registrations = await store.list_registrations()
    payments = await store.list_payments()
    return templates.TemplateResponse(
        request,
        "admin.html",
        {
            "site_name": SITE_NAME,
            "registrations": registrations,
            "payments": payments,
            "paid_total": sum(p["amount"] for p in payments
                              if p["status"] == "completed"),
            "remaining": auth.remaining_seconds(claims),
        },
    )


# ----------------------------
# MockPay checkout (GATEWAY_BACKEND=mock only)
# ----------------------------
if gw.BACKEND == "mock":

    @app.get("/mockpay/{order_id}", response_class=HTMLResponse)
    async def mockpay_screen(
        request: Request, order_id: str,
        gateway: PaymentAdapter = Depends(get_gateway),
    ):
        order = gateway.orders.get(order_id)
        if order is None:
            return fail(404, "order not found")
        return templates.TemplateResponse(request, "mockpay.html", {
            "site_name": SITE_NAME,
            "order_id": order_id,
            "amount_inr": f"{order['amount'] / 100:.2f}",
            "currency": order["currency"],
        })

    @app.post("/mockpay/{order_id}/emit")
    async def mockpay_emit(
        order_id: str,
        gateway: MockGateway = Depends(get_gateway),
    ):
        payment_id, signature = gateway.complete(order_id)
        return {
            "razorpay_order_id": order_id,
            "razorpay_payment_id": payment_id,
            "razorpay_signature": signature,
        }
