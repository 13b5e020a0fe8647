import logging
import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

import config
from auth import AuthService, Principal, log_reset_link, public_user, pwd_context
from cart import CartStore
from catalog import CategoryStore, ProductStore
from credential_store import SessionStore, UserStore
from database import db as default_db, ensure_indexes, serialize, utcnow
from errors import InternalError, NotFound, StorefrontError
from notifications import OrderEventHub
from oauth import GoogleOAuthClient, OAuthError
from order_store import OrderStore
from orders import OrderService
from rate_limit import RateLimiter

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("storefront")

router = APIRouter()


# Helpers
class SignupRequest(BaseModel):
    email: str
    username: str
    password: str

class LoginRequest(BaseModel):
    email: str
    password: str

class ForgotPasswordRequest(BaseModel):
    email: str

class ResetPasswordRequest(BaseModel):
    token: str
    password: str

class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    brand: str = ""
    description: str = ""
    price: Union[str, float]
    image: Optional[str] = None
    categoryId: Optional[str] = None
    rating: int = Field(5, ge=0, le=5)
    stock: int = Field(0, ge=0)

class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    brand: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Union[str, float]] = None
    image: Optional[str] = None
    categoryId: Optional[str] = None
    rating: Optional[int] = Field(None, ge=0, le=5)
    stock: Optional[int] = Field(None, ge=0)

class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    image: Optional[str] = None
    productCount: int = Field(0, ge=0)

class AddToCart(BaseModel):
    productId: str
    quantity: int = Field(1, ge=1)

class UpdateCartItem(BaseModel):
    quantity: int

class OrderCreate(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    postalCode: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    phone: Optional[str] = None

class StatusUpdate(BaseModel):
    status: Optional[str] = None

class DeliveryUpdate(BaseModel):
    deliveryStatus: Optional[str] = None
    trackingNumber: Optional[str] = None
    estimatedDeliveryDate: Optional[datetime] = None
    deliveryNotes: Optional[str] = None

class ContactRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    subject: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)


# Request context
def get_principal(request: Request) -> Principal:
    """The caller: a live login session first, then an `Authorization: Bearer` token."""
    session = request.session
    session_id = session.get("sid")
    if not session_id:
        session_id = session["sid"] = uuid.uuid4().hex
    user_id = request.app.state.sessions.user_id(session.get("login"))
    if not user_id:
        header = request.headers.get("authorization", "")
        if header.lower().startswith("bearer "):
            user_id = request.app.state.auth.decode_token(header[7:].strip())
    return Principal(session_id=session_id, user_id=user_id)

def require_admin(request: Request, principal: Principal = Depends(get_principal)) -> Principal:
    request.app.state.auth.require_admin(principal)
    return principal

def auth_rate_limit(request: Request):
    request.app.state.auth_limiter(request)

def general_rate_limit(request: Request):
    request.app.state.general_limiter(request)

def start_session(request: Request, user_id: str):
    sessions: SessionStore = request.app.state.sessions
    sessions.delete(request.session.get("login"))
    request.session["login"] = sessions.create(user_id, timedelta(days=config.JWT_EXPIRY_DAYS))

def serialize_all(docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [serialize(d) for d in docs]


# Health
@router.get("/")
def read_root():
    return {"message": "Storefront backend running"}

@router.get("/test")
def test_database(request: Request):
    response = {"backend": "ok", "database": "not connected", "collections": []}
    try:
        response["collections"] = request.app.state.db.list_collection_names()[:10]
        response["database"] = "ok"
    except PyMongoError as e:
        response["database"] = f"error: {str(e)[:80]}"
    return response


# Auth
@router.post("/api/auth/signup", dependencies=[Depends(auth_rate_limit)])
def signup(body: SignupRequest, request: Request):
    user, token = request.app.state.auth.signup(body.email, body.username, body.password)
    start_session(request, user["id"])
    return {"user": user, "token": token}

@router.post("/api/auth/login", dependencies=[Depends(auth_rate_limit)])
def login(body: LoginRequest, request: Request):
    user, token = request.app.state.auth.login(body.email, body.password)
    start_session(request, user["id"])
    return {"user": user, "token": token}

@router.post("/api/auth/logout")
def logout(request: Request):
    request.app.state.sessions.delete(request.session.get("login"))
    request.session.clear()
    return {"message": "Logged out successfully"}

@router.get("/api/auth/me")
def me(request: Request, principal: Principal = Depends(get_principal)):
    return {"user": public_user(request.app.state.auth.current_user(principal))}

@router.post("/api/auth/forgot-password", dependencies=[Depends(auth_rate_limit)])
def forgot_password(body: ForgotPasswordRequest, request: Request):
    return {"message": request.app.state.auth.forgot_password(body.email)}

@router.post("/api/auth/reset-password", dependencies=[Depends(auth_rate_limit)])
def reset_password(body: ResetPasswordRequest, request: Request):
    request.app.state.auth.reset_password(body.token, body.password)
    return {"message": "Password reset successfully"}

@router.get("/api/auth/google")
def google_auth_url(request: Request):
    client = request.app.state.oauth
    if client is None:
        raise InternalError("Google OAuth not configured")
    return {"url": client.authorization_url()}

@router.get("/api/auth/google/callback")
def google_callback(request: Request, code: Optional[str] = None):
    client = request.app.state.oauth
    if client is None:
        raise InternalError("Google OAuth not configured")
    try:
        if not code:
            raise OAuthError("Missing authorization code")
        identity = client.exchange_code(code)
        user = request.app.state.auth.oauth_login(identity)
    except (OAuthError, StorefrontError, PyMongoError) as exc:
        logger.error("Google sign-in failed: %s", exc)
        return RedirectResponse("/?login=error", status_code=302)
    start_session(request, str(user["_id"]))
    return RedirectResponse("/?login=success", status_code=302)


# Products & categories
@router.get("/api/products/search")
def search_products(request: Request, q: str = ""):
    return serialize_all(request.app.state.products.search(q))

@router.get("/api/products")
def list_products(request: Request):
    return serialize_all(request.app.state.products.list())

@router.get("/api/products/{product_id}")
def get_product(product_id: str, request: Request):
    product = request.app.state.products.get(product_id)
    if product is None:
        raise NotFound("Product not found")
    return serialize(product)

@router.post("/api/products", dependencies=[Depends(require_admin)])
def create_product(body: ProductCreate, request: Request):
    return serialize(request.app.state.products.create(body.model_dump()))

@router.patch("/api/products/{product_id}", dependencies=[Depends(require_admin)])
def update_product(product_id: str, body: ProductUpdate, request: Request):
    changes = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    product = request.app.state.products.update(product_id, changes)
    if product is None:
        raise NotFound("Product not found")
    return serialize(product)

@router.delete("/api/products/{product_id}", dependencies=[Depends(require_admin)])
def delete_product(product_id: str, request: Request):
    if not request.app.state.products.delete(product_id):
        raise NotFound("Product not found")
    return {"success": True, "message": "Product deleted successfully"}

@router.get("/api/categories")
def list_categories(request: Request):
    return serialize_all(request.app.state.categories.list())

@router.get("/api/categories/{category_id}")
def get_category(category_id: str, request: Request):
    category = request.app.state.categories.get(category_id)
    if category is None:
        raise NotFound("Category not found")
    return serialize(category)

@router.get("/api/categories/{category_id}/products")
def category_products(category_id: str, request: Request):
    return serialize_all(request.app.state.products.by_category(category_id))

@router.post("/api/categories", dependencies=[Depends(require_admin)])
def create_category(body: CategoryCreate, request: Request):
    return serialize(request.app.state.categories.create(body.model_dump()))


# Cart
@router.get("/api/cart")
def get_cart(request: Request, principal: Principal = Depends(get_principal)):
    return serialize_all(request.app.state.carts.list(principal.owner))

@router.post("/api/cart")
def add_to_cart(body: AddToCart, request: Request, principal: Principal = Depends(get_principal)):
    return serialize(request.app.state.carts.add(principal.owner, body.productId, body.quantity))

@router.patch("/api/cart/{item_id}")
def update_cart_item(item_id: str, body: UpdateCartItem, request: Request,
                     principal: Principal = Depends(get_principal)):
    request.app.state.carts.update_quantity(principal.owner, item_id, body.quantity)
    return {"success": True}

@router.delete("/api/cart/{item_id}")
def remove_cart_item(item_id: str, request: Request, principal: Principal = Depends(get_principal)):
    request.app.state.carts.remove(principal.owner, item_id)
    return {"success": True}


# Orders
@router.post("/api/orders")
def place_order(body: OrderCreate, request: Request, principal: Principal = Depends(get_principal)):
    order = request.app.state.orders.place_order(body.model_dump(), principal.owner)
    return serialize(order)

@router.get("/api/orders/{order_id}")
def get_order(order_id: str, request: Request, principal: Principal = Depends(get_principal)):
    return serialize(request.app.state.orders.get_order(principal, order_id))

@router.get("/api/orders/user/{user_id}")
def user_orders(user_id: str, request: Request, principal: Principal = Depends(get_principal)):
    return serialize_all(request.app.state.orders.orders_for_user(principal, user_id))


# Admin
@router.get("/api/admin/orders", dependencies=[Depends(require_admin)])
def admin_orders(request: Request):
    return serialize_all(request.app.state.orders.all_orders())

@router.get("/api/admin/orders/stats", dependencies=[Depends(require_admin)])
def admin_order_stats(request: Request):
    return request.app.state.orders.stats()

@router.get("/api/admin/orders/monthly-report", dependencies=[Depends(require_admin)])
def admin_monthly_report(request: Request, year: Optional[int] = Query(None), month: Optional[int] = Query(None)):
    report = request.app.state.orders.monthly_report(year, month)
    report["orders"] = serialize_all(report["orders"])
    return report

@router.get("/api/admin/orders/status/{status}", dependencies=[Depends(require_admin)])
def admin_orders_by_status(status: str, request: Request):
    return serialize_all(request.app.state.orders.orders_by_status(status))

@router.get("/api/admin/orders/{order_id}/items", dependencies=[Depends(require_admin)])
def admin_order_items(order_id: str, request: Request):
    return serialize_all(request.app.state.orders.order_items(order_id))

@router.patch("/api/admin/orders/{order_id}/status", dependencies=[Depends(require_admin)])
def admin_update_status(order_id: str, body: StatusUpdate, request: Request):
    return serialize(request.app.state.orders.update_status(order_id, body.status))

@router.patch("/api/admin/orders/{order_id}/delivery", dependencies=[Depends(require_admin)])
def admin_update_delivery(order_id: str, body: DeliveryUpdate, request: Request):
    return serialize(request.app.state.orders.update_delivery(order_id, body.model_dump(exclude_unset=True)))


# Contact
@router.post("/api/contact", dependencies=[Depends(general_rate_limit)])
def contact(body: ContactRequest):
    logger.info("Contact form submission from %s <%s>: %s",
                body.name.strip(), body.email.lower(), body.subject.strip())
    return {"success": True, "message": "Message received successfully"}


# Live order events
@router.websocket("/ws")
async def order_events(websocket: WebSocket):
    hub: OrderEventHub = websocket.app.state.hub
    connection_id = await hub.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(connection_id)


# Error rendering
async def storefront_error_handler(request: Request, exc: StorefrontError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)

async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        field = ".".join(str(p) for p in errors[0].get("loc", ()) if p != "body")
        message = f"{field}: {errors[0]['msg']}" if field else errors[0]["msg"]
    return JSONResponse({"error": message}, status_code=400)

async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))

async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_indexes(app.state.db)
    yield


def create_app(database: Optional[Database] = None,
               oauth_client: Optional[GoogleOAuthClient] = None,
               password_context: Optional[CryptContext] = None,
               clock: Optional[Callable[[], datetime]] = None,
               send_reset_link: Optional[Callable[[str, str], None]] = None,
               rate_limits: bool = config.RATE_LIMIT_ENABLED) -> FastAPI:
    config.check_production_secrets()

    app = FastAPI(title="Storefront API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.FRONTEND_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        SessionMiddleware,
        secret_key=config.SESSION_SECRET,
        max_age=config.JWT_EXPIRY_DAYS * 24 * 60 * 60,
        same_site="lax",
        https_only=config.ENVIRONMENT == "production",
    )

    database = database if database is not None else default_db
    if oauth_client is None and config.GOOGLE_CLIENT_ID:
        oauth_client = GoogleOAuthClient(config.GOOGLE_CLIENT_ID, config.GOOGLE_CLIENT_SECRET,
                                         config.GOOGLE_REDIRECT_URI)

    users = UserStore(database)
    products = ProductStore(database)
    carts = CartStore(database, products)
    hub = OrderEventHub()
    auth = AuthService(
        users,
        password_context=password_context or pwd_context,
        clock=clock or utcnow,
        send_reset_link=send_reset_link or log_reset_link,
    )

    app.state.db = database
    app.state.oauth = oauth_client
    app.state.auth = auth
    app.state.sessions = SessionStore(database)
    app.state.products = products
    app.state.categories = CategoryStore(database)
    app.state.carts = carts
    app.state.hub = hub
    app.state.orders = OrderService(OrderStore(database), carts, products, auth, hub)
    app.state.auth_limiter = RateLimiter(
        config.AUTH_RATE_LIMIT, config.RATE_LIMIT_WINDOW_SECONDS,
        "Too many authentication attempts. Please try again in 15 minutes.", enabled=rate_limits)
    app.state.general_limiter = RateLimiter(
        config.GENERAL_RATE_LIMIT, config.RATE_LIMIT_WINDOW_SECONDS,
        "Too many requests. Please try again later.", enabled=rate_limits)

    app.add_exception_handler(StorefrontError, storefront_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(PyMongoError, database_error_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", config.PORT))
    uvicorn.run(app, host="0.0.0.0", port=port)
