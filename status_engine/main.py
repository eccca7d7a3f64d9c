"""
Status Engine - FastAPI Application

Mounts the status configuration router and a health endpoint. Hosts that
embed the engine include ``status_engine.router.router`` in their own app
and override ``get_actor_context`` with their authentication.
"""

import logging
from datetime import datetime

from fastapi import FastAPI

from . import __version__
from .router import router as status_router
from .status_models import default_payload_version

# -----------------------------------------------------------------------------
# Logging Configuration
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("status_engine")

# -----------------------------------------------------------------------------
# FastAPI Application
# -----------------------------------------------------------------------------
app = FastAPI(
    title="Status & Approval Lifecycle Engine",
    description="Organization-scoped status vocabularies, transition rules and legacy migration",
    version=__version__
)

app.include_router(status_router)


# -----------------------------------------------------------------------------
# API Endpoints - Health
# -----------------------------------------------------------------------------
@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "version": __version__,
        "defaults_version": default_payload_version(),
        "timestamp": datetime.utcnow().isoformat(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
