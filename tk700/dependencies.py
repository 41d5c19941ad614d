"""
Dependency injection for the FastAPI application.

The projector services are created once per app by ``create_app`` and kept on
``app.state``; these functions hand them to the routers.
"""
import logging
from typing import Any, Dict

from fastapi import Request

from tk700.services.poller import ProjectorMonitor
from tk700.services.power_state import PowerStateManager
from tk700.services.projector_client import ProjectorClient

log = logging.getLogger("tk700.dependencies")


def get_projector_client(request: Request) -> ProjectorClient:
    return request.app.state.projector


def get_power_manager(request: Request) -> PowerStateManager:
    return request.app.state.power


def get_monitor(request: Request) -> ProjectorMonitor:
    return request.app.state.monitor


async def cleanup_services(state) -> None:
    """Stop polling and close the projector link; called from the lifespan on shutdown."""
    monitor = getattr(state, "monitor", None)
    if monitor is not None:
        try:
            await monitor.stop()
        except Exception as e:
            log.error(f"Error stopping projector monitor: {e}")

    client = getattr(state, "projector", None)
    if client is not None:
        log.info("Closing projector link")
        try:
            await client.close()
        except Exception as e:
            log.error(f"Error closing projector link: {e}")
    log.info("Service cleanup completed")


def check_projector_health(client: ProjectorClient, power: PowerStateManager) -> Dict[str, Any]:
    info = power.get_state_info()
    return {
        "status": "healthy" if client.is_connected() else "degraded",
        "connected": client.is_connected(),
        "power_state": info.state.value,
    }
