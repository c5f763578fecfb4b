from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import structlog

from keyscope.config import get_settings
from keyscope.dependencies import get_redis
from keyscope.routers import keywords, categories, admin, activity
from keyscope.services.rate_limit import RedisBucketStore, TokenBucketLimiter

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("KeyScope API starting", environment=settings.ENVIRONMENT)
    if getattr(app.state, "rate_limiter", None) is None:
        app.state.rate_limiter = TokenBucketLimiter(RedisBucketStore(await get_redis()))
    yield
    logger.info("KeyScope API shutting down")


app = FastAPI(
    title=settings.APP_NAME,
    description="Keyword research: search, category rollups and period uploads",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(keywords.router, prefix=settings.API_V1_PREFIX)
app.include_router(categories.router, prefix=settings.API_V1_PREFIX)
app.include_router(admin.router, prefix=settings.API_V1_PREFIX)
app.include_router(activity.router, prefix=settings.API_V1_PREFIX)


@app.get("/health")
async def health():
    return {"status": "healthy", "service": "keyscope-api", "version": "1.0.0"}
