from __future__ import annotations

import time
from datetime import datetime, timezone

import psutil
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from medshop.api.routes import (
    analytics,
    auth,
    categories,
    customers,
    guest_orders,
    inventory,
    orders,
    payment,
    pos,
    products,
    warehouses,
)
from medshop.core.config import get_settings
from medshop.core.database import Database
from medshop.core.errors import register_exception_handlers
from medshop.core.logging import configure_logging, log_error, log_info
from medshop.security.request_logger import RequestLoggingMiddleware
from medshop.services.cache import CacheService
from medshop.services.container import build_services
from medshop.services.redis import close_redis_client, create_redis_client

configure_logging()
settings = get_settings()

STARTED_AT = time.monotonic()

tags_metadata = [
    {"name": "Auth", "description": "Registration, login, token refresh and profile."},
    {"name": "Products", "description": "Product catalogue, variants and search."},
    {"name": "Categories", "description": "Category tree management and ordering."},
    {"name": "Orders", "description": "Order placement and the order status lifecycle."},
    {"name": "Guest Orders", "description": "Checkout and order tracking without an account."},
    {"name": "POS", "description": "Counter sales, daily takings, refunds and loyalty quotes."},
    {"name": "Customers", "description": "Customer accounts, loyalty points and notes."},
    {"name": "Warehouses", "description": "Warehouse directory and per-warehouse stock."},
    {"name": "Inventory", "description": "Stock adjustments, transfers, counts and valuation."},
    {"name": "Payments", "description": "Payment intents, gateway callbacks and refunds."},
    {"name": "Analytics", "description": "Sales, product, customer and inventory reporting."},
    {"name": "System", "description": "Health and runtime statistics."},
]

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Medical supplies commerce API covering catalogue, orders, inventory and payments.",
    docs_url="/api-docs",
    openapi_url="/api-docs.json",
    openapi_tags=tags_metadata,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins or ([] if settings.is_production else ["*"]),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(
    RequestLoggingMiddleware,
    exempt_paths=("/health",),
)

register_exception_handlers(app, include_stack=settings.environment == "development")

ROUTERS = (
    auth,
    products,
    categories,
    orders,
    guest_orders,
    pos,
    customers,
    warehouses,
    inventory,
    payment,
    analytics,
)
for module in ROUTERS:
    app.include_router(module.router, prefix=settings.api_prefix)


@app.on_event("startup")
async def on_startup() -> None:
    db = Database(settings)
    await db.connect()
    await db.run_migrations()

    redis = create_redis_client(settings.redis_url)
    cache = CacheService(
        redis,
        default_ttl=settings.cache_default_ttl,
        retry_interval=settings.cache_retry_interval,
        sweep_interval=settings.cache_sweep_interval,
    )
    cache.start()

    app.state.redis = redis
    app.state.services = build_services(db, cache, settings)
    log_info(
        "Application started",
        environment=settings.environment,
        database="sqlite" if db.is_sqlite() else "mysql",
        cache="redis" if redis is not None else "memory",
    )


@app.on_event("shutdown")
async def on_shutdown() -> None:
    services = getattr(app.state, "services", None)
    if services is not None:
        await services.cache.stop()
        try:
            await services.db.disconnect()
        except Exception as exc:  # pragma: no cover - shutdown path
            log_error("Error while closing database", error=str(exc))
    await close_redis_client(getattr(app.state, "redis", None))
    log_info("Application shutdown")


def _uptime() -> float:
    return round(time.monotonic() - STARTED_AT, 3)


@app.get("/health", tags=["System"])
async def health() -> dict:
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": _uptime(),
        "environment": settings.environment,
        "version": settings.app_version,
    }


@app.get(f"{settings.api_prefix}/stats", tags=["System"])
async def runtime_stats(request: Request) -> dict:
    process = psutil.Process()
    memory = process.memory_info()
    cpu = process.cpu_times()
    return {
        "memory": {"rss": memory.rss, "vms": memory.vms},
        "uptime": _uptime(),
        "cpuUsage": {"user": cpu.user, "system": cpu.system},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
