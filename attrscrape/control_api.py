"""Control API for runtime management using FastAPI."""
import logging
import time

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from attrscrape.log import NOTICE

logger = logging.getLogger(__name__)

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "NOTICE": NOTICE,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


class LogLevelRequest(BaseModel):
    """Request to change log level."""
    level: str


class ControlAPI:
    """FastAPI-based control API for runtime management."""

    def __init__(self, collector):
        """
        Initialize control API.

        Args:
            collector: Reference to the running collector
        """
        self.collector = collector
        self.app = FastAPI(title="attrscrape Control API")

        # Setup routes
        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/healthz")
        async def healthz():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": time.time()}

        @self.app.get("/status")
        async def status():
            """Get current collector status."""
            try:
                return self.collector.status()
            except Exception as e:
                logger.error(f"Error getting status: {e}")
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.post("/control/poll")
        def poll_now():
            """Run one poll cycle immediately."""
            try:
                logger.info("Poll requested through the control API")
                families = self.collector.poll()
                return {
                    "status": "polled",
                    "families": len(families),
                    "metrics": sum(len(f) for f in families),
                    "timestamp": time.time()
                }
            except Exception as e:
                logger.error(f"Error running poll: {e}")
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.post("/control/loglevel")
        async def set_log_level(request: LogLevelRequest):
            """Change log level at runtime."""
            level = request.level.upper()

            if level not in LOG_LEVELS:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid log level: {level}"
                )

            logging.getLogger().setLevel(LOG_LEVELS[level])
            logger.info(f"Log level changed to: {level}")

            return {
                "status": "log_level_changed",
                "level": level,
                "timestamp": time.time()
            }

    def run(self, host: str = "0.0.0.0", port: int = 8081):
        """Run the API server."""
        import uvicorn
        uvicorn.run(self.app, host=host, port=port, log_level="info")
