import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp
from aiohttp import ClientTimeout

from club.errors import ExternalServiceError, NotFoundError


class JsonApiClient:
    """Thin async JSON client shared by the billing and storefront integrations."""

    service_name = "external service"

    def __init__(
        self,
        base_url: str,
        timeout: float = 20.0,
        headers: Optional[Dict[str, str]] = None,
        auth: Optional[aiohttp.BasicAuth] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = ClientTimeout(total=timeout)
        self.headers = {"Accept": "application/json", **(headers or {})}
        self.auth = auth
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                headers=self.headers,
                auth=self.auth,
            )
        return self._session

    async def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        session = await self._get_session()

        try:
            async with session.request(method, url, params=params, json=json_data) as response:
                if response.status in (200, 201):
                    return await response.json()
                if response.status == 204:
                    return {}
                text = await response.text()
                if response.status == 404:
                    logging.warning(f"{self.service_name}: resource not found {method} {url}")
                    raise NotFoundError(f"{self.service_name} resource not found.", {"url": url})
                logging.error(f"{self.service_name} error {response.status} on {method} {url}: {text[:200]}")
                raise ExternalServiceError(
                    f"{self.service_name} request failed with status {response.status}.",
                    {"url": url, "status": response.status},
                )
        except asyncio.TimeoutError as e:
            logging.error(f"{self.service_name}: request timeout {method} {url}")
            raise ExternalServiceError(f"{self.service_name} request timed out.", {"url": url}) from e
        except aiohttp.ClientError as e:
            logging.error(f"{self.service_name}: request failed {method} {url} - {e}")
            raise ExternalServiceError(f"{self.service_name} is unreachable.", {"url": url}) from e

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
