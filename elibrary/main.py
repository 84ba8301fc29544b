import logging
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from elibrary.core.config import settings
from elibrary.core.library_client import LibraryAPIError
from elibrary.api import cart, orders, session

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.SERVICE_NAME,
    description="Borrow cart synchronization and order progress for the e-library frontend",
    version="1.0.0",
    openapi_url="/api/openapi.json",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

# Session cookie plays the role of the browser's token/userId storage
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.SESSION_SECRET_KEY,
    max_age=settings.SESSION_MAX_AGE_SECONDS
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(session.router)
app.include_router(cart.router)
app.include_router(orders.router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": settings.SERVICE_NAME}


@app.exception_handler(LibraryAPIError)
async def library_api_exception_handler(request: Request, exc: LibraryAPIError):
    # Upstream client errors pass through; anything else is a bad gateway
    status_code = exc.status_code if exc.status_code and exc.status_code < 500 else status.HTTP_502_BAD_GATEWAY
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message},
    )


@app.on_event("startup")
async def startup_event():
    logger.info(f"Starting {settings.SERVICE_NAME} against {settings.LIBRARY_API_BASE_URL}")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down borrow service")
    from elibrary.services.cart_registry import cart_registry
    from elibrary.core.library_client import library_client
    await cart_registry.close()
    await library_client.close()
