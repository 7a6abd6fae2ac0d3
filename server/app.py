"""
FastAPI server for the Khodarji storefront.

Endpoints:
- GET /health: Health check
- Catalog: GET /products, GET /deals, GET /cities
- Cart (keyed by the X-Session-Id header): /cart, /cart/items
- Auth: POST /auth/login, POST /auth/logout, GET /auth/oauth/{provider}, POST /auth/oauth/session
- Checkout: POST /checkout, POST /checkout/whatsapp
- Orders: GET /orders, POST /orders/{id}/cancel, DELETE /orders/{id}
- Admin: /admin/products, /admin/orders/{id}/status, /admin/enrollments
- POST /enrollments, POST /assistant/chat
"""

import sys
import time
import uuid
from collections import OrderedDict
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, Dict, Optional
import logging

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
import structlog
import uvicorn

from src.storefront.config import Config, ConfigError, get_config, init_config


# Initialize structured logging
def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if log_level != "DEBUG" else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


from src.storefront import auth, enrollments, orders
from src.storefront.assistant import ShoppingAssistant
from src.storefront.catalog import DEFAULT_CITY, JORDAN_CITIES, Catalog
from src.storefront.errors import EmptyCartError, ProductNotFoundError, ShopError
from src.storefront.handoff import format_cart_message, format_order_message, whatsapp_link
from src.storefront.models import Category, OrderStatus, Product
from src.storefront.persistence import Store, create_store
from src.storefront.pricing import PricingRules
from src.storefront.session import FileSessionStore, SessionStore, ShopSession, is_valid_session_id

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Khodarji storefront server...")

    try:
        config = init_config()
        configure_logging(config.log_level)

        if getattr(app.state, "store", None) is None:
            app.state.store = create_store(config)
        if getattr(app.state, "session_store", None) is None:
            app.state.session_store = FileSessionStore(config.session_dir)

        if not await app.state.store.test_connection():
            logger.warning("Backend not reachable at startup", supabase_url=config.supabase_url)

        logger.info(
            "Server ready",
            port=config.port,
            public_host=config.public_host,
            assistant_enabled=config.assistant_enabled,
        )

    except ConfigError as e:
        logger.error("Configuration error", error=str(e))
        sys.exit(1)

    yield

    logger.info("Shutting down server...")
    await app.state.store.close()


app = FastAPI(
    title="Khodarji Storefront",
    description="Bilingual grocery storefront: catalog, cart, checkout and orders",
    version="1.0.0",
    lifespan=lifespan,
)
app.state.store = None
app.state.session_store = None
app.state.assistants = OrderedDict()


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class LocalizedText(BaseModel):
    en: str = ""
    ar: str = ""


class ProductIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    name: LocalizedText
    category: Category = Category.OTHER
    price: Decimal = Field(..., gt=0)
    discount_price: Optional[Decimal] = Field(default=None, gt=0, alias="discountPrice")
    image: str = ""
    unit: str = "KG"
    organic: bool = False
    description: Optional[LocalizedText] = None

    def to_product(self, product_id: str) -> Product:
        data = self.model_dump(by_alias=True)
        data["id"] = product_id
        return Product.from_dict(data)


class CartItemIn(BaseModel):
    product_id: str
    quantity: Decimal = Decimal("1")


class CartQuantityIn(BaseModel):
    quantity: Decimal


class LoginIn(BaseModel):
    phone: str
    city: Optional[str] = None
    pin: Optional[str] = None


class OAuthSessionIn(BaseModel):
    access_token: str = Field(..., min_length=1)
    city: Optional[str] = None


class CheckoutIn(BaseModel):
    phone: str
    city: str = DEFAULT_CITY
    pin: Optional[str] = None
    language: Optional[str] = None


class WhatsAppDraftIn(BaseModel):
    phone: Optional[str] = None
    city: str = DEFAULT_CITY
    language: Optional[str] = None


class StatusIn(BaseModel):
    status: OrderStatus


class EnrollmentIn(BaseModel):
    phone: str
    name: Optional[str] = None


class ChatIn(BaseModel):
    message: str = Field(..., min_length=1)
    language: Optional[str] = None


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_store(request: Request) -> Store:
    store = request.app.state.store
    if store is None:
        store = request.app.state.store = create_store(get_config())
    return store


def get_session_store(request: Request) -> SessionStore:
    sessions = request.app.state.session_store
    if sessions is None:
        sessions = request.app.state.session_store = FileSessionStore(get_config().session_dir)
    return sessions


def get_session(
    x_session_id: str = Header(..., alias="X-Session-Id"),
    sessions: SessionStore = Depends(get_session_store),
    config: Config = Depends(get_config),
):
    if not is_valid_session_id(x_session_id):
        raise HTTPException(status_code=400, detail="Invalid X-Session-Id header")
    session = ShopSession(x_session_id, sessions, language=config.default_language).load()
    try:
        yield session
    finally:
        session.close()


async def get_catalog(store: Store = Depends(get_store)) -> Catalog:
    return Catalog(await store.list_products())


def _language(session: ShopSession, override: Optional[str]) -> str:
    if override in ("ar", "en"):
        return override
    return session.language


def _cart_view(session: ShopSession, config: Config) -> Dict[str, Any]:
    return {
        "items": session.cart.to_dict(),
        "pricing": session.cart.pricing(PricingRules.from_config(config)).to_dict(),
        "currency": config.currency,
    }


# ---------------------------------------------------------------------------
# Health and catalog
# ---------------------------------------------------------------------------


@app.get("/health")
async def health_check(store: Store = Depends(get_store)) -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(
        content={
            "status": "healthy",
            "timestamp": time.time(),
            "backend": await store.test_connection(),
        }
    )


@app.get("/products")
async def list_products(
    category: Optional[Category] = None,
    q: Optional[str] = None,
    catalog: Catalog = Depends(get_catalog),
) -> Dict[str, Any]:
    products = catalog.search(q) if q else list(catalog)
    if category is not None:
        allowed = {p.id for p in catalog.by_category(category)}
        products = [p for p in products if p.id in allowed]
    return {"products": [p.to_dict() for p in products]}


@app.get("/deals")
async def list_deals(catalog: Catalog = Depends(get_catalog)) -> Dict[str, Any]:
    return {"products": [p.to_dict() for p in catalog.deals()]}


@app.get("/cities")
async def list_cities() -> Dict[str, Any]:
    return {
        "default": DEFAULT_CITY,
        "cities": [{"en": city.en, "ar": city.ar} for city in JORDAN_CITIES],
    }


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------


@app.get("/cart")
async def get_cart(
    session: ShopSession = Depends(get_session),
    config: Config = Depends(get_config),
) -> Dict[str, Any]:
    return _cart_view(session, config)


@app.post("/cart/items")
async def add_cart_item(
    body: CartItemIn,
    session: ShopSession = Depends(get_session),
    catalog: Catalog = Depends(get_catalog),
    config: Config = Depends(get_config),
) -> Dict[str, Any]:
    product = catalog.get(body.product_id)
    if product is None:
        raise ProductNotFoundError(f"Product {body.product_id} not found")
    session.cart.add(product, body.quantity)
    return _cart_view(session, config)


@app.patch("/cart/items/{product_id}")
async def update_cart_item(
    product_id: str,
    body: CartQuantityIn,
    session: ShopSession = Depends(get_session),
    config: Config = Depends(get_config),
) -> Dict[str, Any]:
    session.cart.update_quantity(product_id, body.quantity)
    return _cart_view(session, config)


@app.delete("/cart/items/{product_id}")
async def remove_cart_item(
    product_id: str,
    session: ShopSession = Depends(get_session),
    config: Config = Depends(get_config),
) -> Dict[str, Any]:
    if not session.cart.remove(product_id):
        raise ProductNotFoundError(f"Product {product_id} is not in the cart")
    return _cart_view(session, config)


@app.delete("/cart")
async def clear_cart(
    session: ShopSession = Depends(get_session),
    config: Config = Depends(get_config),
) -> Dict[str, Any]:
    session.cart.clear()
    return _cart_view(session, config)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


@app.post("/auth/login")
async def login(
    body: LoginIn,
    session: ShopSession = Depends(get_session),
    store: Store = Depends(get_store),
    config: Config = Depends(get_config),
) -> Dict[str, Any]:
    user = await auth.sign_in(store, body.phone, body.city, body.pin, config=config)
    session.sign_in(user)
    return {"user": user.to_dict()}


@app.post("/auth/logout")
async def logout(session: ShopSession = Depends(get_session)) -> Dict[str, Any]:
    session.logout()
    return {"ok": True}


@app.get("/auth/oauth/{provider}")
async def oauth_start(
    provider: str,
    redirect_to: Optional[str] = None,
    config: Config = Depends(get_config),
) -> Dict[str, Any]:
    try:
        url = auth.oauth_authorize_url(provider, redirect_to, config=config)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"url": url}


@app.post("/auth/oauth/session")
async def oauth_session(
    body: OAuthSessionIn,
    session: ShopSession = Depends(get_session),
    store: Store = Depends(get_store),
    config: Config = Depends(get_config),
) -> Dict[str, Any]:
    user = await auth.sign_in_with_oauth(store, body.access_token, body.city, config=config)
    session.sign_in(user)
    return {"user": user.to_dict()}


# ---------------------------------------------------------------------------
# Checkout and orders
# ---------------------------------------------------------------------------


@app.post("/checkout")
async def place_order(
    body: CheckoutIn,
    session: ShopSession = Depends(get_session),
    store: Store = Depends(get_store),
    config: Config = Depends(get_config),
) -> Dict[str, Any]:
    order = await orders.place_order(session, store, body.phone, body.city, pin=body.pin, config=config)
    message = format_order_message(order, _language(session, body.language), currency=config.currency)
    return {
        "order": order.to_dict(),
        "whatsapp_url": whatsapp_link(message, config.whatsapp_number),
    }


@app.post("/checkout/whatsapp")
async def whatsapp_draft(
    body: WhatsAppDraftIn,
    session: ShopSession = Depends(get_session),
    config: Config = Depends(get_config),
) -> Dict[str, Any]:
    if session.cart.is_empty:
        raise EmptyCartError("Cannot check out an empty cart")
    message = format_cart_message(
        session.cart.lines,
        body.phone or (session.user.phone if session.user else None),
        body.city,
        _language(session, body.language),
        currency=config.currency,
        rules=PricingRules.from_config(config),
    )
    return {"message": message, "whatsapp_url": whatsapp_link(message, config.whatsapp_number)}


@app.get("/orders")
async def list_orders(
    session: ShopSession = Depends(get_session),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    history = await orders.order_history(session, store)
    pending = orders.latest_pending(history)
    return {
        "orders": [o.to_dict() for o in history],
        "latest_pending": pending.to_dict() if pending else None,
    }


@app.post("/orders/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    session: ShopSession = Depends(get_session),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    order = await orders.cancel_order(session, store, order_id)
    return {"order": order.to_dict()}


@app.delete("/orders/{order_id}")
async def delete_order(
    order_id: str,
    session: ShopSession = Depends(get_session),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    await orders.delete_order(session, store, order_id)
    return {"ok": True}


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@app.post("/admin/products")
async def create_product(
    body: ProductIn,
    session: ShopSession = Depends(get_session),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    product = body.to_product(body.id or f"p{uuid.uuid4().hex[:8]}")
    await orders.save_product(session, store, product)
    return {"product": product.to_dict()}


@app.put("/admin/products/{product_id}")
async def update_product(
    product_id: str,
    body: ProductIn,
    session: ShopSession = Depends(get_session),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    product = body.to_product(product_id)
    await orders.save_product(session, store, product)
    return {"product": product.to_dict()}


@app.delete("/admin/products/{product_id}")
async def delete_product(
    product_id: str,
    session: ShopSession = Depends(get_session),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    await orders.delete_product(session, store, product_id)
    return {"ok": True}


@app.post("/admin/products/seed")
async def seed_products(
    session: ShopSession = Depends(get_session),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    await orders.seed_products(session, store)
    return {"ok": True}


@app.patch("/admin/orders/{order_id}/status")
async def set_order_status(
    order_id: str,
    body: StatusIn,
    session: ShopSession = Depends(get_session),
    store: Store = Depends(get_store),
    config: Config = Depends(get_config),
) -> Dict[str, Any]:
    order = await orders.admin_update_status(session, store, order_id, body.status, config=config)
    return {"order": order.to_dict()}


@app.get("/admin/enrollments")
async def list_enrollments(
    session: ShopSession = Depends(get_session),
    store: Store = Depends(get_store),
) -> Dict[str, Any]:
    entries = await enrollments.list_enrollments(session, store)
    return {"enrollments": [e.to_dict() for e in entries]}


# ---------------------------------------------------------------------------
# Enrollments and assistant
# ---------------------------------------------------------------------------


@app.post("/enrollments")
async def enroll(body: EnrollmentIn, store: Store = Depends(get_store)) -> Dict[str, Any]:
    await enrollments.enroll(store, body.phone, body.name)
    return {"ok": True}


def _assistant_for(
    assistants: "OrderedDict[str, ShoppingAssistant]", session_id: str, config: Config
) -> ShoppingAssistant:
    """Per-session assistant; the least recently used conversation is dropped past the cap."""
    assistant = assistants.get(session_id)
    if assistant is None:
        assistant = assistants[session_id] = ShoppingAssistant(config)
    assistants.move_to_end(session_id)
    while len(assistants) > max(1, config.assistant_max_sessions):
        evicted, _ = assistants.popitem(last=False)
        logger.debug("Assistant conversation evicted", session_id=evicted)
    return assistant


@app.post("/assistant/chat")
async def assistant_chat(
    body: ChatIn,
    request: Request,
    session: ShopSession = Depends(get_session),
    config: Config = Depends(get_config),
) -> Dict[str, Any]:
    assistant = _assistant_for(request.app.state.assistants, session.session_id, config)
    reply = await assistant.reply(
        body.message,
        language=_language(session, body.language),
        cart_lines=session.cart.lines,
    )
    return {"reply": reply, "available": assistant.available}


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError) -> JSONResponse:
    """Domain errors carry their own status code and stable error code."""
    logger.info("Request rejected", path=request.url.path, error=exc.code, detail=str(exc))
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": str(exc)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler."""
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        error=str(exc),
    )

    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )


def main() -> None:
    """Run the server."""
    config = get_config()
    configure_logging(config.log_level)

    logger.info("Starting server", port=config.port)

    uvicorn.run(
        "server.app:app",
        host="0.0.0.0",
        port=config.port,
        log_level=config.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
