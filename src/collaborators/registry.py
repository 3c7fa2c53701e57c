# src/collaborators/registry.py — v1
"""crates.io registry client over httpx."""

from __future__ import annotations

import logging

import httpx

from cratevault.collaborators.base import RegistryClient
from cratevault.errors import NetworkError, NotFound

logger = logging.getLogger(__name__)


class HttpRegistryClient(RegistryClient):
    """Downloads crate archives from a crates.io compatible API."""

    def __init__(
        self,
        base_url: str = "https://crates.io/api/v1/crates",
        timeout: float = 60.0,
        user_agent: str = "cratevault",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._headers = {"User-Agent": user_agent}
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=True,
            timeout=self._timeout,
            headers=self._headers,
            transport=self._transport,
        )

    async def download(self, name: str, version: str) -> bytes:
        url = f"{self._base_url}/{name}/{version}/download"
        logger.info("Downloading %s@%s from %s", name, version, url)
        response = await self._get(url, what=f"{name}@{version}")
        return response.content

    async def latest_version(self, name: str) -> str:
        url = f"{self._base_url}/{name}"
        response = await self._get(url, what=name)
        try:
            crate = response.json()["crate"]
        except (ValueError, KeyError) as e:
            raise NetworkError(f"Unexpected registry response for {name}") from e
        version = crate.get("max_stable_version") or crate.get("max_version")
        if not version:
            raise NotFound(f"No published versions of {name}")
        return version

    async def _get(self, url: str, what: str) -> httpx.Response:
        try:
            async with self._client() as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            raise NetworkError(
                f"Failed to reach registry for {what}: {e}", detail={"url": url}
            ) from e

        if response.status_code == 404:
            raise NotFound(f"{what} not found on the registry", detail={"url": url})
        if response.status_code >= 400:
            raise NetworkError(
                f"Registry returned HTTP {response.status_code} for {what}",
                detail={"url": url, "status": response.status_code},
            )
        return response
