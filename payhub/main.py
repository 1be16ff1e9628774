"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from payhub.api import gateways, webhooks
from payhub.config import get_settings
from payhub.container import build_core_services
from payhub.database import Base, async_session, engine
from payhub.logging_config import configure_logging

settings = get_settings()
services = build_core_services(settings, async_session)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await services.start()

    yield

    await services.stop()
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description="Payment gateway routing and outbound webhook delivery",
    lifespan=lifespan,
)
app.state.services = services

# Register routers
app.include_router(gateways.router, prefix="/api/v1")
app.include_router(webhooks.router, prefix="/api/v1")


@app.get("/health")
async def health():
    return {"status": "ok", "app": settings.app_name}
