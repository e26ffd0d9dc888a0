import os
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
import structlog

from .config import settings
from .db import Base, engine
from .logging import setup_logging, RequestIdMiddleware
from .auth.router import router as auth_router
from .routes.files import router as files_router, get_storage
from .routes.brands import router as brands_router
from .routes.products import router as products_router
from .routes.collateral import router as collateral_router
from .routes.clients import router as clients_router
from .routes.pdf import router as pdf_router
from .routes.shared_pdf import router as shared_pdf_router
from .routes.orders import router as orders_router
from .services.uploads import UploadQueue
from .models import models  # noqa: F401  (register tables on Base.metadata)


logger = structlog.get_logger(__name__)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Routers
    app.include_router(auth_router)
    app.include_router(files_router)
    app.include_router(brands_router)
    app.include_router(products_router)
    app.include_router(collateral_router)
    app.include_router(clients_router)
    app.include_router(pdf_router)
    app.include_router(shared_pdf_router)
    app.include_router(orders_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    app.state.upload_queue = UploadQueue(store_factory=get_storage)

    @app.get("/health")
    def health():
        return {"status": "ok", "environment": settings.environment}

    @app.on_event("startup")
    async def _startup():
        logger.info("startup", environment=settings.environment)
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
        app.state.upload_queue.start()

    @app.on_event("shutdown")
    async def _shutdown():
        await app.state.upload_queue.stop()

    return app


app = create_app()
