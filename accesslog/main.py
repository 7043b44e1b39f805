"""Demo application for the access log middleware.

  - Access log lines configured from ACCESSLOG_* environment variables
  - Health checks are filtered out of the access log
  - Timestamp refresh runs on a daemon thread for the life of the process

Run with ``uvicorn accesslog.main:app``.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Form, Request

from accesslog.config import settings
from accesslog.middleware.access_log import AccessLogMiddleware
from accesslog.schemas import AccessLogConfig

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def skip_health_checks(request: Request) -> bool:
    """Access log filter: health probes would drown out real traffic."""
    return request.url.path == "/health"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info("Access log demo starting up...")
    yield
    logger.info("Access log demo shut down")


app = FastAPI(
    title="accesslog",
    description="Access log middleware demo",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    AccessLogMiddleware,
    config=AccessLogConfig.from_settings(settings, filter=skip_health_checks),
)


@app.get("/health")
async def health_check():
    """Health check endpoint (never logged)."""
    return {"status": "healthy", "version": "1.0.0"}


@app.get("/test/{param}/suffix")
async def parameterized(param: str):
    return {"param": param}


@app.post("/echo")
async def echo(name: str = Form(...)):
    """Echo a form field back to the caller."""
    return {"name": name}


@app.get("/boom")
async def boom():
    raise RuntimeError("boom")
