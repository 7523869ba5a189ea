"""FastAPI application entry point for the LoCompro API."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from locompro.app.config import get_settings
from locompro.domain.schemas import HealthResponse
from locompro.infra.database import init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize database on startup."""
    await init_db()
    logger.info("LoCompro API ready")
    yield


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

app = FastAPI(
    title="LoCompro API",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS: any origin in debug mode (LAN/IP access)
_cors_origins = settings.cors_origins_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=("*" not in _cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Route includes
# ---------------------------------------------------------------------------
from locompro.app.routes.auth import router as auth_router
from locompro.app.routes.buy_requests import router as buy_requests_router
from locompro.app.routes.offers import router as offers_router
from locompro.app.routes.chats import router as chats_router
from locompro.app.routes.reviews import router as reviews_router
from locompro.app.routes.users import router as users_router
from locompro.app.routes.posts import router as posts_router

app.include_router(auth_router)
app.include_router(buy_requests_router)
app.include_router(offers_router)
app.include_router(chats_router)
app.include_router(reviews_router)
app.include_router(users_router)
app.include_router(posts_router)


@app.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check():
    """Return service health status."""
    return HealthResponse(status="ok", service="locompro")


def run() -> None:
    """Run the application with uvicorn (used by project.scripts entry point)."""
    uvicorn.run(
        "locompro.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
