"""
Device agent entry point.

Runs the device link against the command server and serves the operator API
(status, connect/disconnect, identity change) on the same event loop.
"""

from datetime import datetime
from contextlib import asynccontextmanager

from fastapi import FastAPI

from wscontroller.core.container import container
from wscontroller.core.logging import configure_logging, get_logger
from wscontroller.routers import device
from wscontroller.services.link.manager import start_link, close_link, get_controller

# Initialize settings and logging
settings = container.settings()
configure_logging(settings)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Agent lifespan management."""
    logger.info("Starting device agent",
                server=settings.server_base_url,
                reconnect_strategy=settings.reconnect_strategy)

    identity = container.identity_store()
    if settings.device_number and identity.get() != settings.device_number:
        identity.set(settings.device_number)

    await start_link(
        container.controller(),
        container.reachability(),
        poll_interval=settings.reachability_poll_interval,
    )
    logger.info("Device agent started", device_id=identity.get())
    yield

    await close_link()
    logger.info("Device agent shutdown complete")


app = FastAPI(
    title="WS Controller Device Agent",
    version="1.0.0",
    description="Persistent control channel between this device and the command server",
    lifespan=lifespan,
)

app.include_router(device.router)


@app.get("/health")
async def health_check():
    """Agent health."""
    controller = get_controller()
    return {
        "status": "OK",
        "service": "wscontroller",
        "link": controller.snapshot() if controller else None,
        "timestamp": datetime.now().isoformat()
    }


def run():
    import uvicorn
    logger.info("Starting operator API", host=settings.api_host, port=settings.api_port)
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
    )


if __name__ == "__main__":
    run()
