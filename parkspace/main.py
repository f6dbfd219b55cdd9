"""
Parking Space Occupancy - FastAPI service

Thin HTTP surface over DetectionEngine. The caller keeps the returned spaces
and sends them back as previous_spaces with the next frame.
"""

import asyncio
import logging
import os
import platform
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List

import psutil
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from parkspace.config import MODELS_ENABLED, MODELS_PRELOAD, MODEL_VERIFICATION_INTERVAL
from parkspace.detection import DetectionEngine
from parkspace.errors import InvalidSource
from parkspace.schemas import DetectionResult, DetectionSettings, ParkingSpace

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

engine = DetectionEngine()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("=" * 50)
    logger.info("PARKING SPACE OCCUPANCY")
    logger.info("=" * 50)
    logger.info(f"MODELS_ENABLED: {MODELS_ENABLED}, MODELS_PRELOAD: {MODELS_PRELOAD}, "
                f"VERIFICATION_INTERVAL: {MODEL_VERIFICATION_INTERVAL}")
    logger.info("=" * 50)

    preload = None
    if MODELS_ENABLED and MODELS_PRELOAD:
        logger.info("Preloading verification models...")

        async def load_models():
            if await engine.models.ensure_loaded():
                logger.info("Verification models ready!")
            else:
                logger.warning("Verification models failed to load, will retry on first detection")

        preload = asyncio.create_task(load_models())
    elif MODELS_ENABLED:
        logger.info("Models will load on first detection")
    else:
        logger.info("Model verification disabled - using heuristics only")

    yield
    # Shutdown
    logger.info("Shutting down...")
    if preload is not None and not preload.done():
        preload.cancel()
    engine.reset_state()


app = FastAPI(
    title="Parking Space Occupancy",
    lifespan=lifespan
)


# Pydantic models
class DetectRequest(BaseModel):
    image: str  # base64
    regions: List[Dict[str, Any]]  # Validated per region, invalid ones are dropped
    previous_spaces: List[ParkingSpace] = Field(default_factory=list)


# API Routes
@app.post("/api/detect", response_model=DetectionResult)
async def detect(req: DetectRequest):
    """Detect occupancy for all regions in one frame."""
    try:
        return await engine.detect(req.image, req.regions, req.previous_spaces)
    except InvalidSource as e:
        logger.warning(f"Rejected frame: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Detection failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/settings", response_model=DetectionSettings)
async def get_settings():
    return engine.settings


@app.post("/api/configure", response_model=DetectionSettings)
async def configure(options: Dict[str, bool]):
    """Toggle detection settings; omitted settings keep their value."""
    try:
        return engine.configure(**options)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/reset")
async def reset_state():
    """Release models and forget the previous frame."""
    engine.reset_state()
    return {"status": "ok"}


@app.get("/api/health")
async def health():
    """Health check endpoint."""
    wants_models = engine.settings.use_model_verification and engine.models.enabled
    return {
        "status": "healthy",
        "models_loaded": engine.models.loaded,
        "degraded": wants_models and not engine.models.loaded,
        "frames_processed": engine.frame_count
    }


@app.get("/api/stats")
async def get_stats():
    """Get server statistics."""
    process = psutil.Process()
    memory_info = process.memory_info()
    system_memory = psutil.virtual_memory()
    uptime_seconds = time.time() - process.create_time()

    return {
        "memory": {
            "process_rss_mb": round(memory_info.rss / 1024 / 1024, 1),
            "process_vms_mb": round(memory_info.vms / 1024 / 1024, 1),
            "system_total_mb": round(system_memory.total / 1024 / 1024, 1),
            "system_available_mb": round(system_memory.available / 1024 / 1024, 1),
            "system_percent_used": system_memory.percent
        },
        "ml_models": engine.models.status(),
        "detection": {
            "frames_processed": engine.frame_count,
            "verification_interval": engine.verification_interval,
            "target_size": list(engine.target_size),
            "settings": engine.settings.model_dump()
        },
        "system": {
            "platform": platform.system(),
            "python_version": platform.python_version(),
            "uptime_seconds": round(uptime_seconds),
            "uptime_formatted": f"{int(uptime_seconds // 3600)}h {int((uptime_seconds % 3600) // 60)}m"
        }
    }


def run():
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    run()
