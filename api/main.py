# api/main.py
from dotenv import load_dotenv
import os

env = os.getenv("APP_ENV", "local")
if env == "local":
    load_dotenv(".env.local")
else:
    load_dotenv(".env")

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
from database.db import init_db
from fastapi.middleware.cors import CORSMiddleware

from api.routers import health, work, workflows, teams, share
from services.job_queue import AnalysisJobQueue, JobQueueConfig
from services.rate_limit_service import RateLimitExceededError

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)
logger.info(f"🔧 Loaded environment: {env}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Starting Synchro Backend: initializing DB")
    try:
        init_db()
    except Exception as e:
        logger.error(f"❌ Failed to initialize database: {e}", exc_info=True)
        raise

    queue = AnalysisJobQueue(JobQueueConfig.from_env())
    await queue.start()
    queue.recover()
    app.state.job_queue = queue

    yield

    logger.info("🛑 Shutting down Synchro Backend")
    await queue.stop()
    app.state.job_queue = None


app = FastAPI(
    title="Synchro - Work Video Analysis API",
    version="1.0.0",
    description="Turns screen recordings of business work into editable step-by-step workflows.",
    lifespan=lifespan
)


@app.exception_handler(RateLimitExceededError)
async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError):
    return JSONResponse(
        status_code=429,
        content={
            "error": exc.message,
            "resetTime": exc.reset_time.isoformat(),
            "remainingRequests": 0,
        },
    )


# CORS Configuration
origins = []
if env == "local":
    origins = ["http://localhost:3000", "http://localhost:5173"]  # Common dev ports
else:
    # Production origins from environment variable
    origins_str = os.getenv("ALLOWED_ORIGINS", "")
    origins = [origin.strip() for origin in origins_str.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(health.router)
app.include_router(work.router, prefix="/api/work", tags=["Work"])
app.include_router(workflows.router, prefix="/api/work", tags=["Workflows"])
app.include_router(share.router, prefix="/api/work", tags=["Share"])
app.include_router(teams.router, prefix="/api/teams", tags=["Teams"])


@app.get("/")
async def root():
    return {"message": "Synchro Backend Running Successfully 🚀"}
