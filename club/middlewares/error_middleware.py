import logging
from typing import Awaitable, Callable

from aiohttp import web

from club.errors import ClubError

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Turns domain errors into ``{"success": false, ...}`` envelopes with their status code."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ClubError as e:
        log = logging.error if e.status_code >= 500 else logging.info
        log(f"{request.method} {request.path} -> {e.status_code} {e.code}: {e.message}")
        return web.json_response(e.to_payload(), status=e.status_code)
    except Exception as e:
        logging.error(f"Unhandled error on {request.method} {request.path}: {e}", exc_info=True)
        return web.json_response(
            {"success": False, "error": "Internal server error.", "code": "internal_error"},
            status=500,
        )
