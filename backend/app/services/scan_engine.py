"""Scan engine client - talks to the browser-automation service."""
import logging
from typing import Optional

import httpx

from ..config import settings
from ..exceptions import ScanEngineError
from ..schemas.scan_engine import EngineResult

logger = logging.getLogger(__name__)


class HttpScanEngine:
    """Loads a page in a remote headless browser and returns the raw signals."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url
        self._transport = transport

    @property
    def base_url(self) -> Optional[str]:
        url = self._base_url or settings.scan_engine_url
        return url.rstrip("/") if url else None

    async def run(self, url: str, depth: str, timeout: int) -> EngineResult:
        """Scan a page. Raises ScanEngineError when the engine is unreachable."""
        if not self.base_url:
            raise ScanEngineError("Scan engine not configured", retryable=False)

        payload = {"url": url, "depth": depth, "timeout": timeout}
        try:
            # Leave headroom over the engine's own navigation timeout
            async with httpx.AsyncClient(timeout=timeout + 15, transport=self._transport) as client:
                response = await client.post(f"{self.base_url}/scans", json=payload)
        except httpx.TimeoutException as e:
            raise ScanEngineError(f"Scan engine timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ScanEngineError(f"Scan engine unreachable: {e}") from e

        if response.status_code >= 500:
            raise ScanEngineError(f"Scan engine returned {response.status_code}")
        if response.status_code >= 400:
            raise ScanEngineError(
                f"Scan engine rejected request ({response.status_code}): {response.text[:200]}",
                retryable=False,
            )

        return EngineResult.model_validate(response.json())

    async def fetch_screenshot(self, ref: str) -> Optional[bytes]:
        """Download a screenshot captured by an earlier scan."""
        if not self.base_url or not ref:
            return None
        async with httpx.AsyncClient(timeout=30, transport=self._transport) as client:
            response = await client.get(f"{self.base_url}/screenshots/{ref}")
        if response.status_code != 200:
            logger.warning(f"Screenshot {ref} download failed: {response.status_code}")
            return None
        return response.content


# Global instance
scan_engine = HttpScanEngine()
