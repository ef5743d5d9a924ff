import aiohttp

from order_service.config import settings

_session: aiohttp.ClientSession | None = None


async def get_http_session() -> aiohttp.ClientSession:
    """Shared session for calls to the customer and notification services."""
    global _session
    if _session is None or _session.closed:
        headers = {"Accept": "application/json"}
        if settings.service_token:
            headers["Authorization"] = f"Bearer {settings.service_token}"
        _session = aiohttp.ClientSession(headers=headers)
    return _session


async def close_http_session() -> None:
    global _session
    if _session is not None:
        await _session.close()
        _session = None
