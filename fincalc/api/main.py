"""FastAPI application factory"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from starlette.responses import Response

from fincalc.api.middleware import MetricsMiddleware, RequestIDMiddleware
from fincalc.api.v1 import fee_schedule, profiles, recommendations
from fincalc.config import settings
from fincalc.infrastructure.cache import KeyValueCache
from fincalc.infrastructure.clients.fee_data import FeeDataClient
from fincalc.infrastructure.database import session as db_session
from fincalc.infrastructure.database.models import Base
from fincalc.infrastructure.fallback import FallbackOrchestrator
from fincalc.infrastructure.observability.logging import setup_logging
from fincalc.infrastructure.storage import MemoryStorage, SQLStorage
from fincalc.services.fee_data import FeeDataManager, NetworkMonitor

# Setup structured logging
setup_logging(settings.log_level)


def build_fee_data_manager(
    engine: Engine,
    client: FeeDataClient | None = None,
    network_monitor: NetworkMonitor | None = None,
) -> FeeDataManager:
    """Wire cache, fallback chain and client over durable (database) and session (memory) storage"""
    durable_storage = SQLStorage(sessionmaker(autocommit=False, autoflush=False, bind=engine), settings.storage_quota_bytes)
    session_storage = MemoryStorage(settings.storage_quota_bytes)

    return FeeDataManager(
        cache=KeyValueCache(durable_storage),
        fallback=FallbackOrchestrator(durable_storage, session_storage),
        client=client or FeeDataClient(),
        durable_storage=durable_storage,
        network_monitor=network_monitor,
    )


def create_app(
    engine: Engine | None = None,
    fee_data_client: FeeDataClient | None = None,
    network_monitor: NetworkMonitor | None = None,
) -> FastAPI:
    """Create and configure FastAPI application"""
    engine = engine or db_session.engine

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        Base.metadata.create_all(bind=engine)
        manager = app.state.fee_data_manager
        await manager.initialize()
        manager.cache.start()
        yield
        await manager.dispose()

    app = FastAPI(
        title="fincalc",
        description="Court-fee reference data, user profiles and bank product recommendations",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.fee_data_manager = build_fee_data_manager(engine, fee_data_client, network_monitor)
    app.state.profile_storage = MemoryStorage(settings.storage_quota_bytes)

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(fee_schedule.router, prefix="/v1", tags=["fees"])
    app.include_router(profiles.router, prefix="/v1", tags=["profiles"])
    app.include_router(recommendations.router, prefix="/v1", tags=["recommendations"])

    return app


app = create_app()
