"""
Product Service - FastAPI entry point

Catalog CRUD and search for the storefront, stock adjustment for admins,
and the internal stock-reservation endpoint the order service calls
before placing an order.
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from . import commands, queries, store
from .auth import require_admin, require_service_token
from .config import Settings
from .errors import (
    InsufficientStockError,
    NotFoundError,
    ProductServiceError,
    ReservationFailedError,
)
from .logging_config import configure_logging
from .publisher import EventPublisher
from .reservation import StockReservationSaga
from .schemas import MAX_STOCK_QUANTITY, StockDemand

logger = logging.getLogger(__name__)

CHECK_STOCK_PATH = "/api/products/internal/check-stock"


# ── Request Models ───────────────────────────────


class CheckStockRequest(BaseModel):
    items: list[StockDemand]


class StockAdjustmentRequest(BaseModel):
    quantity: int = Field(ge=-MAX_STOCK_QUANTITY, le=MAX_STOCK_QUANTITY)


class ProductRequest(BaseModel):
    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    price: float = Field(ge=0)
    stock_quantity: int = Field(default=0, ge=0, le=MAX_STOCK_QUANTITY, alias="stockQuantity")
    categories: list[str] = []


# ── Dependencies ─────────────────────────────────


async def get_session(request: Request):
    async with request.app.state.session_factory() as session:
        yield session


def get_publisher(request: Request) -> EventPublisher:
    return request.app.state.publisher


# ── Routes ───────────────────────────────────────

router = APIRouter(
    prefix="/api/products", dependencies=[Depends(require_service_token)]
)


@router.post("/internal/check-stock")
async def check_stock_and_update(
    req: CheckStockRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Reserve stock for every item of an order, or for none of them."""
    saga = StockReservationSaga(
        session, publisher, session_factory=request.app.state.session_factory
    )
    updated = await saga.execute(req.items)
    return {
        "message": "Stock checked and updated successfully",
        "updatedProducts": [u.to_json() for u in updated],
    }


@router.get("")
async def get_all_products(
    page_size: int = Query(default=10, ge=1, alias="pageSize"),
    page: int = Query(default=1, ge=1, alias="pageNumber"),
    keyword: str | None = None,
    category: str | None = None,
    min_price: float | None = Query(default=None, alias="minPrice"),
    max_price: float | None = Query(default=None, alias="maxPrice"),
    session: AsyncSession = Depends(get_session),
):
    return await queries.list_products(
        session,
        keyword=keyword,
        category=category,
        min_price=min_price,
        max_price=max_price,
        page=page,
        page_size=page_size,
    )


@router.get("/search")
async def search_products(
    term: str | None = None,
    category: str | None = None,
    min_price: float | None = Query(default=None, alias="minPrice"),
    max_price: float | None = Query(default=None, alias="maxPrice"),
    page: int = Query(default=1, ge=1, alias="pageNumber"),
    session: AsyncSession = Depends(get_session),
):
    return await queries.search_products(
        session,
        term=term,
        category=category,
        min_price=min_price,
        max_price=max_price,
        page=page,
    )


@router.get("/top")
async def get_top_products(session: AsyncSession = Depends(get_session)):
    return await queries.top_products(session)


@router.get("/admin/stats", dependencies=[Depends(require_admin)])
async def get_product_stats(session: AsyncSession = Depends(get_session)):
    return await queries.product_stats(session)


@router.get("/{product_id}")
async def get_product_by_id(product_id: str, session: AsyncSession = Depends(get_session)):
    product = await store.find_by_id(session, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    return product.to_json()


@router.post("", status_code=201, dependencies=[Depends(require_admin)])
async def create_product(req: ProductRequest, session: AsyncSession = Depends(get_session)):
    product = await commands.create_product(
        session,
        name=req.name,
        description=req.description,
        price=req.price,
        stock_quantity=req.stock_quantity,
        categories=req.categories,
    )
    return product.to_json()


@router.put("/{product_id}", dependencies=[Depends(require_admin)])
async def update_product(
    product_id: str,
    req: ProductRequest,
    session: AsyncSession = Depends(get_session),
):
    product = await commands.update_product(
        session,
        product_id,
        name=req.name,
        description=req.description,
        price=req.price,
        stock_quantity=req.stock_quantity,
        categories=req.categories,
    )
    return product.to_json()


@router.delete("/{product_id}", dependencies=[Depends(require_admin)])
async def delete_product(product_id: str, session: AsyncSession = Depends(get_session)):
    await commands.delete_product(session, product_id)
    return {"message": "Product deleted"}


@router.put("/{product_id}/stock", dependencies=[Depends(require_admin)])
async def update_stock(
    product_id: str,
    req: StockAdjustmentRequest,
    session: AsyncSession = Depends(get_session),
    publisher: EventPublisher = Depends(get_publisher),
):
    product = await commands.adjust_stock(session, publisher, product_id, req.quantity)
    return product.to_json()


# ── Error Handlers ───────────────────────────────


async def handle_insufficient_stock(request: Request, exc: InsufficientStockError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "outOfStockItems": exc.items},
    )


async def handle_reservation_failed(request: Request, exc: ReservationFailedError):
    logger.error(
        "Error in checkStockAndUpdate: %s (saga log: %s)", exc.message, exc.saga_log
    )
    return JSONResponse(
        status_code=500, content={"message": "Server error", "error": exc.message}
    )


async def handle_service_error(request: Request, exc: ProductServiceError):
    if exc.status_code >= 500:
        logger.error("Error processing %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


async def handle_validation_error(request: Request, exc: RequestValidationError):
    if request.url.path == CHECK_STOCK_PATH:
        return JSONResponse(status_code=400, content={"message": "Invalid items data"})
    return JSONResponse(
        status_code=400,
        content={"message": "Invalid request", "errors": jsonable_encoder(exc.errors())},
    )


# ── Application ──────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    engine = None
    if app.state.session_factory is None:
        engine = create_async_engine(settings.database_url, echo=False, pool_pre_ping=True)
        await store.create_schema(engine)
        app.state.session_factory = sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )

    owns_publisher = app.state.publisher is None
    if owns_publisher:
        app.state.publisher = EventPublisher.from_url(
            settings.redis_url,
            exchange=settings.event_exchange,
            maxlen=settings.event_stream_maxlen,
        )

    logger.info("Product service started")
    yield

    if owns_publisher:
        await app.state.publisher.aclose()
    if engine is not None:
        await engine.dispose()
    logger.info("Product service stopped")


def create_app(
    settings: Settings | None = None,
    *,
    session_factory=None,
    publisher: EventPublisher | None = None,
) -> FastAPI:
    """
    Build the application.

    session_factory / publisher are created in the lifespan from settings
    unless passed in.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(title="Product Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.publisher = publisher

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "%s %s %d %.1fms",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response

    app.add_exception_handler(InsufficientStockError, handle_insufficient_stock)
    app.add_exception_handler(ReservationFailedError, handle_reservation_failed)
    app.add_exception_handler(ProductServiceError, handle_service_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)

    app.include_router(router)

    @app.get("/health")
    @app.get("/api/health")
    async def health():
        return {"status": "ok", "service": "product-service"}

    return app


app = create_app()
