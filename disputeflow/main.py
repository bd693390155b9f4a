from contextlib import asynccontextmanager

from fastapi import FastAPI

from disputeflow.api.middleware import AuditMiddleware
from disputeflow.api.v1.router import v1_router
from disputeflow.common.logging import setup_logging
from disputeflow.config import settings
from disputeflow.integrations import (
    ChainGatewayClient,
    MarketplaceClient,
    ModerationClient,
    NotificationClient,
    PaymentClient,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    yield


app = FastAPI(
    title="DisputeFlow API",
    description="Automated dispute assessment and resolution for marketplace orders",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(AuditMiddleware)

app.include_router(v1_router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    clients = [
        MarketplaceClient(),
        PaymentClient(),
        ChainGatewayClient(),
        ModerationClient(),
        NotificationClient(),
    ]
    integrations = {c.name: await c.health_check() for c in clients}
    return {
        "status": "healthy" if all(integrations.values()) else "degraded",
        "service": "disputeflow",
        "version": "1.0.0",
        "env": settings.APP_ENV,
        "integrations": integrations,
    }
