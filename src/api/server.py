#!/usr/bin/env python
"""FastAPI server for the image generation backend."""

import logging
import sys
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

# Add src directory to Python path for imports
src_dir = Path(__file__).parent.parent
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import close_services
from api.routers import edits, generation
from utils.config import load_config, validate_config
from utils.logging import setup_logging

config = load_config()
setup_logging(config["log_level"], json_output=config["log_json"])
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    for warning in validate_config(config):
        logger.warning(warning)
    yield
    await close_services()


app = FastAPI(title="Image Generation API", version="1.0.0", lifespan=lifespan)

# "*" allows any origin; otherwise only the listed ones
cors_origins = config["cors_origins"]
allow_any_origin = "*" in cors_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=[] if allow_any_origin else cors_origins,
    allow_origin_regex=".*" if allow_any_origin else None,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Tag each request with a short id and log its outcome and duration."""
    request_id = uuid.uuid4().hex[:8]
    structlog.contextvars.bind_contextvars(request_id=request_id)
    started = time.perf_counter()
    logger.info(f"{request.method} {request.url.path} started")
    try:
        response = await call_next(request)
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} in {elapsed_ms}ms")
        return response
    finally:
        structlog.contextvars.unbind_contextvars("request_id")


app.include_router(generation.router)
app.include_router(edits.router)
