import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError

from gradeflow.assignments.assignment_router import router as assignment_router
from gradeflow.config import (
    CORS_ORIGINS, LOG_LEVEL, RATE_LIMIT_REQUESTS, RATE_LIMIT_WINDOW_SECONDS, VERSION
)
from gradeflow.database import create_indexes, db
from gradeflow.grades.grade_router import router as grade_router
from gradeflow.submissions.submission_router import router as submission_router
from gradeflow.system.health_router import router as health_router
from gradeflow.system.rate_limiter import RateLimiter

# Configure logging
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create indexes on startup, drop limiter state on shutdown"""
    logger.info("Starting Gradeflow API...")
    await create_indexes(db)
    yield
    app.state.rate_limiter.reset()
    logger.info("Shutting down Gradeflow API...")


async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    # Unique index caught a race the service-level checks missed
    logger.warning("Duplicate key on %s: %s", request.url.path, exc.details)
    return JSONResponse(status_code=409, content={"detail": "Resource already exists"})


def create_app(rate_limiter: RateLimiter = None, use_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title="Gradeflow",
        description="Submission, grading and assignment statistics API",
        version=VERSION,
        lifespan=lifespan if use_lifespan else None,
    )

    app.state.rate_limiter = rate_limiter or RateLimiter(
        RATE_LIMIT_REQUESTS, RATE_LIMIT_WINDOW_SECONDS
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DuplicateKeyError, duplicate_key_handler)

    # ==================== ROUTER REGISTRATION ====================
    app.include_router(assignment_router)
    app.include_router(submission_router)
    app.include_router(grade_router)
    app.include_router(health_router)

    @app.get("/")
    async def root():
        return {"message": "Gradeflow API", "version": VERSION}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("gradeflow.main:app", host="0.0.0.0", port=8000)
