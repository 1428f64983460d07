from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx


class ProviderError(Exception):
    """A third-party API returned an error or an unusable response."""

    def __init__(self, provider: str, message: str, status: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message
        self.status = status


class Provider(ABC):
    """Base provider interface"""

    name: str
    timeout_s: float = 10

    def __init__(
        self,
        base_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport)

    async def ready(self) -> bool:
        """Check if provider is ready to serve requests"""
        return bool(self.base_url)

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        pass
