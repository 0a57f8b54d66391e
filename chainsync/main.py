"""
chainsync - FastAPI app

Runs the pipeline inside the API process and exposes the event-control surface.
    uvicorn chainsync.main:app --host 0.0.0.0 --port 8000
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chainsync.api.event_control import router as event_control_router
from chainsync.pipeline import build_pipeline

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    pipeline = build_pipeline()
    await pipeline.start()
    app.state.pipeline = pipeline
    app.state.admin_control = pipeline.admin
    logger.info("✅ Pipeline started")
    try:
        yield
    finally:
        await pipeline.stop()
        app.state.admin_control = None
        logger.info("Pipeline stopped")


app = FastAPI(
    title="chainsync",
    description="Blockchain event ingestion and reconciliation pipeline",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(event_control_router)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/health")
async def api_health():
    admin = getattr(app.state, 'admin_control', None)
    status = admin.get_connection_status() if admin else None
    return {
        "status": "ok" if status and status['state'] == 'running' else "degraded",
        "service": "chainsync",
        "pipeline": status,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
