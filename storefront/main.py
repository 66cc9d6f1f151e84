# storefront/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from storefront.api.routers.admin_orders import router as admin_orders_router
from storefront.api.routers.loyalty import router as loyalty_router
from storefront.api.routers.metrics import router as metrics_router
from storefront.api.routers.orders import router as orders_router
from storefront.core.config import get_settings
from storefront.core.logging import setup_logging
from storefront.core.scheduler import init_scheduler, shutdown_scheduler
from storefront.db.base import init_models
from storefront.db.session import close_engines
from storefront.http_problem_handlers import register_exception_handlers
from storefront.obs.metrics import PrometheusMiddleware

settings = get_settings()
setup_logging(settings.LOG_LEVEL, settings.JSON_LOG)
logger = logging.getLogger("storefront")

init_models()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    init_scheduler()
    logger.info("storefront started (env=%s)", settings.ENV)
    try:
        yield
    finally:
        shutdown_scheduler()
        await close_engines()


app = FastAPI(
    title="Storefront Core",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "http://127.0.0.1:8000",
        "http://localhost:8000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(PrometheusMiddleware)

register_exception_handlers(app)

# ===========================
#          挂载路由
# ===========================
app.include_router(orders_router)
app.include_router(admin_orders_router)
app.include_router(loyalty_router)

# 观测
app.include_router(metrics_router)


@app.get("/")
async def root():
    return {"name": "Storefront Core", "version": "1.0.0"}


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}
