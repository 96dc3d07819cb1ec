"""
Main FastAPI application entry point.
Configures and initializes the upload control API.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from upload_engine.core.config import settings
from upload_engine.core.dependencies import get_upload_manager
from upload_engine.core.exception_handler import register_exception_handlers
from upload_engine.api.routes import health_routes, upload_routes

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Pause in-flight uploads so they resume from the server offset next time
    if get_upload_manager.cache_info().currsize:
        await get_upload_manager().shutdown()


# Create FastAPI application
app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description="Resumable chunked uploads of large media files",
    lifespan=lifespan
)

# Register exception handlers
register_exception_handlers(app)

# Register routes
app.include_router(health_routes.router)
app.include_router(upload_routes.router)

# Middleware to log request paths
@app.middleware("http")
async def log_request(request: Request, call_next):
    logger.info("Request path: %s", request.url.path)
    response = await call_next(request)
    return response


# For local development
if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO)
    uvicorn.run(app, host="127.0.0.1", port=8000)
