import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .db import Database, get_database
from .errors import ServiceError
from .public_routes import router as public_router
from .settings import settings
from .staff_routes import router as staff_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application...")
    # A database handed to create_app belongs to the caller
    owns_db = getattr(app.state, "db", None) is None
    if owns_db:
        app.state.db = Database()
    app.state.db.create_all()
    yield
    if owns_db:
        app.state.db.dispose()
    logger.info("Application stopped")


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code},
    )


def create_app(database: Database | None = None) -> FastAPI:
    app = FastAPI(title="QR Dine API", lifespan=lifespan)
    app.state.db = database

    # Parse CORS origins from environment (comma-separated)
    cors_origins_list = [
        origin.strip()
        for origin in settings.cors_origins.split(",")
        if origin.strip()
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ServiceError, service_error_handler)

    app.include_router(public_router, prefix="/public", tags=["Public"])
    app.include_router(staff_router, tags=["Staff"])

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.get("/health/db")
    def health_db(database: Database = Depends(get_database)) -> dict:
        """Check database connection."""
        try:
            database.check_connection()
        except SQLAlchemyError as e:
            raise HTTPException(status_code=503, detail=f"Database error: {e}")
        return {"status": "ok", "database": "connected"}

    return app


app = create_app()
