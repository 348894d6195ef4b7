# postflow/platforms/base.py
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
import structlog

from postflow.errors import CredentialError, PlatformPostError
from postflow.schemas.credential_schema import Credential, TokenGrant
from postflow.schemas.post_schema import MediaContent

logger = structlog.get_logger(__name__)


class PlatformAdapter(ABC):
    """
    Posts approved content straight to one platform with a stored
    credential. Adapters never retry; they raise PlatformPostError and the
    reconciler decides what happens next.
    """

    name: str = ""
    supports_refresh: bool = False

    def __init__(self, timeout: int = 30, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    @abstractmethod
    async def post(self, content: MediaContent, credential: Credential) -> str:
        """Publish and return the platform's id for the new post."""

    async def refresh(self, credential: Credential) -> TokenGrant:
        raise CredentialError(self.name, "token refresh is not supported")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise PlatformPostError(self.name, f"network error: {e}", transient=True) from e

    def _error(self, response: httpx.Response, message: str) -> PlatformPostError:
        transient = response.status_code >= 500 or response.status_code == 429
        return PlatformPostError(self.name, message, transient=transient)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return {}

    def _require_account(self, credential: Credential) -> str:
        if not credential.account_id:
            raise PlatformPostError(self.name, "credential has no account id; reconnect the account")
        return credential.account_id
