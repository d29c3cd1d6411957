"""
FastAPI application entry point.

Local-only server over the bencher scheduler.
"""

from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

from src import __version__
from src.infra.config import load_config
from src.infra.logging_config import setup_logging
from .routers import jobs, scheduler
from ._scheduler_state import init_scheduler_service, shutdown_scheduler_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Builds the scheduler service on startup; stops draining on shutdown.
    """
    load_dotenv()
    config = load_config()
    setup_logging(config.log_level, config.log_dir)
    init_scheduler_service(config)

    yield

    shutdown_scheduler_service()

# Tag metadata for Swagger UI
tags_metadata = [
    {
        "name": "jobs",
        "description": "Job queries, submission and removal",
    },
    {
        "name": "scheduler",
        "description": "Execution slot status and recovery",
    },
]

app = FastAPI(
    title="bencher API",
    lifespan=lifespan,
    description="""
## bencher API

Local-only API over the benchmark job scheduler. Jobs run one at a time
in container sandboxes; submissions made while a job runs are queued FIFO.

### Usage
```bash
# Start server
uvicorn src.api.main:app --host 127.0.0.1 --port 8000

# Submit a prepared job
curl -X POST http://localhost:8000/jobs/v1/schedule

# Check it
curl http://localhost:8000/jobs/v1
```

### Note
This API is designed for **local use only**. There is no authentication.
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=tags_metadata,
)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "version": __version__}


app.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
app.include_router(scheduler.router, prefix="/scheduler", tags=["scheduler"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
