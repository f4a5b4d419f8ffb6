import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from club.errors import ClubError, ExternalServiceError

T = TypeVar("T")


async def call_external(awaitable: Awaitable[T], what: str, timeout: Optional[float] = None) -> T:
    """
    Await a downstream call under a deadline.

    Domain errors pass through unchanged; timeouts and any other exception
    become ExternalServiceError.
    """
    try:
        if timeout:
            return await asyncio.wait_for(awaitable, timeout)
        return await awaitable
    except ClubError:
        raise
    except asyncio.TimeoutError as e:
        logging.error(f"{what}: deadline of {timeout}s exceeded")
        raise ExternalServiceError(f"{what} timed out.") from e
    except Exception as e:
        logging.error(f"{what} failed: {e}", exc_info=True)
        raise ExternalServiceError(f"{what} failed.") from e
