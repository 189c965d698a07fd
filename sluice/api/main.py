"""
FastAPI application entry point.

Operator API for the submission scheduler.

- Lifespan builds the SchedulerService from environment configuration,
  restores any saved run and auto-resumes it when it was running
- Optional API key authentication
"""

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import Depends, FastAPI

from .. import __version__
from ..infra.config import SchedulerConfig
from ..remote.api_client import HttpObservationPort, HttpSubmissionPort
from ._scheduler_state import (
    get_scheduler_service,
    init_scheduler_service,
    shutdown_scheduler_service,
)
from .dependencies.auth import verify_api_key, API_AUTH_ENABLED
from .routers import scheduler


logger = logging.getLogger(__name__)

load_dotenv()

# HTTP ports opened at startup, closed at shutdown
_ports: list = []


async def startup_scheduler() -> None:
    """
    Build the scheduler service and restore any saved run.

    Without SLUICE_SUBMIT_URL / SLUICE_OBSERVE_URL the service is left
    uninitialized and /scheduler/* answers 503.
    """
    config = SchedulerConfig.from_env()

    if not config.submit_url or not config.observe_url:
        logger.warning(
            "SLUICE_SUBMIT_URL / SLUICE_OBSERVE_URL not set; scheduler disabled"
        )
        return

    submission_port = HttpSubmissionPort(
        config.submit_url, token=config.api_token, timeout=config.http_timeout
    )
    observation_port = HttpObservationPort(
        config.observe_url, token=config.api_token, timeout=config.http_timeout
    )
    _ports.extend([submission_port, observation_port])

    service = init_scheduler_service(config, submission_port, observation_port)
    stats = await service.recover()
    logger.info(f"Scheduler service ready (recovery: {stats})")


async def shutdown_scheduler() -> None:
    """Stop the scheduler and close the HTTP ports."""
    await shutdown_scheduler_service()

    while _ports:
        await _ports.pop().aclose()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown of the scheduler service.
    """
    await startup_scheduler()

    yield

    await shutdown_scheduler()


tags_metadata = [
    {
        "name": "scheduler",
        "description": "Batch intake and scheduler control - enqueue prompts, start/pause/resume/stop, status",
    },
]

app = FastAPI(
    title="Sluice Scheduler API",
    lifespan=lifespan,
    description="""
## Sluice Scheduler API

Bounded-concurrency submission scheduler for a remote generation service.

### Authentication
When `API_AUTH_ENABLED=true`, all endpoints except `/health` require an
`X-API-Key` header matching the `API_KEY` environment variable.

### Usage
```bash
# Start server
uvicorn sluice.api.main:app --host 127.0.0.1 --port 8000

# Enqueue and start
curl -X POST http://localhost:8000/scheduler/batch \\
  -H "Content-Type: application/json" \\
  -d '{"items": [{"text": "a lighthouse at dusk", "label": "scene 1"}], "start": true}'
```
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=tags_metadata,
)


# Health check - NO authentication (operational endpoint)
@app.get("/health")
async def health_check():
    """Health check endpoint. Not authenticated."""
    try:
        scheduler_state = get_scheduler_service().state.scheduler_state.value
    except RuntimeError:
        scheduler_state = None
    return {"status": "ok", "version": __version__, "scheduler": scheduler_state}


auth_dependency = [Depends(verify_api_key)] if API_AUTH_ENABLED else []

app.include_router(
    scheduler.router, prefix="/scheduler", tags=["scheduler"], dependencies=auth_dependency
)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
