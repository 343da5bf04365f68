"""REST API module for the classifieds marketplace.

This module provides HTTP endpoints for:
- Searching, reading and managing listings
- Promotion plans and checkout
- Conversations between buyers and sellers
- Profile, dashboard and favorites
"""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from database import init_db, close as db_close

logger = logging.getLogger(__name__)

# Lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the backend pool on startup and close it on shutdown."""
    logger.info("Initializing API...")
    await init_db()

    yield

    logger.info("Shutting down API...")
    await db_close()

def create_app(cors_origins: Optional[List[str]] = None) -> FastAPI:
    """Create the FastAPI app with all routers.

    Args:
        cors_origins: Allowed CORS origins, all origins if not given
    """
    app = FastAPI(
        title="Classifieds API",
        description="REST API for the classifieds marketplace",
        version="1.0.0",
        lifespan=lifespan
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health():
        """Liveness check."""
        return {"status": "ok"}

    # Import and include all routers
    from .listings import router as listings_router
    from .chat import router as chat_router
    from .profile import router as profile_router

    app.include_router(listings_router)
    app.include_router(chat_router)
    app.include_router(profile_router)

    return app

app = create_app()
