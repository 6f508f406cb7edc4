"""HTTP transport for QuestFlow sync.

Each queued mutation is delivered as ``POST {apiUrl}/{action}`` with a
bearer credential and the payload as the JSON body.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from questflow.errors import ConfigurationError, TransportFailure
from questflow.settings import SettingsManager

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
HEALTH_TIMEOUT = 5.0


class HttpTransport:
    """Sends sync queue items to the remote API with httpx.

    The endpoint and credential are read from settings on every call, so
    changes take effect without rebuilding the transport.

    Args:
        settings: Settings holding ``api_url`` and ``api_key``.
        client: Optional preconfigured httpx client (tests pass one with a
            mock transport).
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        settings: SettingsManager,
        client: Optional[httpx.Client] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._settings = settings
        self._client = client or httpx.Client(timeout=timeout)
        self._owns_client = client is None

    def _credentials(self):
        settings = self._settings.get()
        if not settings.sync_configured:
            raise ConfigurationError("API configuration not found")
        return settings.api_url.rstrip("/"), settings.api_key

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def send(self, action: str, payload: Dict[str, Any]) -> Any:
        """Deliver one mutation.

        Raises:
            ConfigurationError: If no endpoint or credential is configured.
            TransportFailure: On network errors or non-2xx responses.
        """
        api_url, api_key = self._credentials()
        url = f"{api_url}/{action}"
        try:
            response = self._client.post(url, json=payload, headers=self._headers(api_key))
        except httpx.HTTPError as e:
            raise TransportFailure(f"Request to {url} failed: {e}") from e

        if not response.is_success:
            raise TransportFailure(
                f"HTTP error! status: {response.status_code}", status_code=response.status_code
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def check_health(self, timeout: float = HEALTH_TIMEOUT) -> bool:
        """Whether ``GET {apiUrl}/health`` answers 200."""
        try:
            api_url, api_key = self._credentials()
        except ConfigurationError:
            return False
        try:
            response = self._client.get(
                f"{api_url}/health", headers=self._headers(api_key), timeout=timeout
            )
        except httpx.HTTPError as e:
            logger.debug(f"Health check failed: {e}")
            return False
        return response.status_code == 200

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
