from contextlib import asynccontextmanager

import redis.asyncio as redis
from fastapi import Depends, FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.auth.admin_routes import router as admin_router
from authcore.auth.auth_routes import router as auth_router
from authcore.core.config import settings
from authcore.core.handlers import register_exception_handlers
from authcore.core.logging import get_logger, setup_logging
from authcore.db.database import check_database, check_redis, close_db, get_async_session, get_redis, init_db

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    await init_db()
    logger.info("service_started")
    yield
    # Shutdown
    await close_db()
    logger.info("service_stopped")


app = FastAPI(
    title="Authcore API",
    description="Authentication and credential lifecycle service",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(dict.fromkeys([settings.FRONTEND_URL, *settings.CORS_ORIGINS])),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(auth_router, prefix="/api/auth", tags=["Authentication"])
app.include_router(admin_router, prefix="/api/admin/users", tags=["Admin"])


@app.get("/")
async def root():
    return {"message": "Authcore API is running!"}


@app.get("/api/health")
async def health_check(
    response: Response,
    db: AsyncSession = Depends(get_async_session),
    redis_client: redis.Redis = Depends(get_redis),
):
    checks = {
        "database": await check_database(db),
        "redis": await check_redis(redis_client),
    }
    healthy = all(checks.values())
    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {"status": "healthy" if healthy else "degraded", "service": "Authcore API", "checks": checks}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "authcore.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
