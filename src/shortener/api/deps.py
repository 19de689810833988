from fastapi import Request

from src.shortener.core.config import logger
from src.shortener.services.registry import Registry


def get_registry(request: Request) -> Registry:
    """
    Get the registry attached to the running application.

    Args:
        request: Incoming request

    Returns:
        The application's Registry
    """
    return request.app.state.registry


def get_click_source(request: Request) -> str:
    """
    Best-effort origin of a resolution request.

    Prefers the Origin header, then Referer, then the client address.
    """
    source = request.headers.get("origin") or request.headers.get("referer")
    if not source and request.client:
        source = request.client.host
    return source or "Direct"


def get_click_location(request: Request) -> str:
    """
    Coarse location label forwarded by a proxy or CDN, if any.

    Falls back to "Unknown"; no geo lookup is attempted here.
    """
    location = request.headers.get("x-coarse-location") or request.headers.get("cf-ipcountry")
    if not location:
        logger.debug("No location header on request")
    return location or "Unknown"
