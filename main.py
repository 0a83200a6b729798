"""Entry point for the cloud config update service."""
import uvicorn
import os
import logging
from src.server import app

# ==============================================================================
# Logging Configuration
# ------------------------------------------------------------------------------
# LOG_LEVEL controls the service's own loggers, including the lock lifecycle
# messages emitted while cloud config updates are queued and drained.
# ==============================================================================
log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=log_level,
    format='%(asctime)s - %(levelname)s - %(name)s - %(message)s'
)

HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", 8080))

if __name__ == "__main__":
    uvicorn.run(app, host=HOST, port=PORT, log_level=log_level.lower())
