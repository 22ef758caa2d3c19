"""Main entry point for the fleet health monitor."""

import logging
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, HTTPException

from fleet_monitor import __version__
from fleet_monitor.config import load_config
from fleet_monitor.scheduler import HealthMonitorService


def configure_logging(level: str = "INFO") -> None:
    """Configure structured console logging."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger(__name__)

# Global monitor instance
monitor: Optional[HealthMonitorService] = None
app = FastAPI(title="Fleet Health Monitor", version=__version__)


@app.on_event("startup")
async def startup_event():
    """Load configuration and start the background monitor."""
    global monitor
    if monitor is None:
        config = load_config()
        configure_logging(config.log_level)
        logger.info("Fleet API configured", api_base=config.api_base)
        monitor = HealthMonitorService(config)
    await monitor.start()
    logger.info("Fleet health monitor started")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the background monitor."""
    if monitor:
        await monitor.stop()
    logger.info("Fleet health monitor shut down")


def _require_monitor() -> HealthMonitorService:
    if monitor is None:
        raise HTTPException(status_code=503, detail="Monitor not initialized")
    return monitor


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "healthy", "service": "fleet-monitor"}


@app.get("/status")
async def get_status():
    """Monitor diagnostics."""
    return _require_monitor().status()


@app.get("/fleet/last-snapshot")
async def get_last_snapshot():
    """Last fleet status snapshot seen by a completed sweep."""
    snapshot = _require_monitor().last_state
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No fleet snapshot yet")
    return snapshot.to_wire()


@app.post("/run/sweep")
async def trigger_sweep():
    """Run one sweep now."""
    result = await _require_monitor().run_sweep()
    return result.to_dict()


def main() -> None:
    config = load_config()
    configure_logging(config.log_level)
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
