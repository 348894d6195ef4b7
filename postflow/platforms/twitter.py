# postflow/platforms/twitter.py
import os
from typing import Optional

import httpx
import structlog

from postflow.errors import CredentialError, PlatformPostError
from postflow.platforms.base import PlatformAdapter
from postflow.schemas.credential_schema import Credential, TokenGrant
from postflow.schemas.post_schema import MediaContent

logger = structlog.get_logger(__name__)

TWITTER_API_URL = os.getenv("TWITTER_API_URL", "https://api.twitter.com/2")
TWITTER_CLIENT_ID = os.getenv("TWITTER_CLIENT_ID")
TWITTER_CLIENT_SECRET = os.getenv("TWITTER_CLIENT_SECRET")


def _twitter_message(body: dict, fallback: str) -> str:
    if body.get("detail"):
        return body["detail"]
    errors = body.get("errors") or []
    if errors and isinstance(errors[0], dict) and errors[0].get("message"):
        return errors[0]["message"]
    return body.get("title") or body.get("error_description") or fallback


class TwitterAdapter(PlatformAdapter):
    """Text-only posts through the v2 API with an OAuth 2.0 user-context token."""

    name = "twitter"
    supports_refresh = True

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        api_url: str = TWITTER_API_URL,
        timeout: int = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout=timeout, transport=transport)
        self.client_id = client_id or TWITTER_CLIENT_ID
        self.client_secret = client_secret or TWITTER_CLIENT_SECRET
        self.api_url = api_url.rstrip("/")

    async def post(self, content: MediaContent, credential: Credential) -> str:
        text = content.full_text()
        if not text:
            raise PlatformPostError(self.name, "nothing to post: caption and hashtags are empty")

        response = await self._send(
            "POST",
            f"{self.api_url}/tweets",
            headers={"Authorization": f"Bearer {credential.access_token}"},
            json={"text": text},
        )
        body = self._json(response)
        if response.status_code >= 400:
            raise self._error(response, _twitter_message(body, response.reason_phrase))

        tweet_id = (body.get("data") or {}).get("id")
        logger.info("twitter_posted", brand_id=credential.brand_id, tweet_id=tweet_id)
        return str(tweet_id or "")

    async def refresh(self, credential: Credential) -> TokenGrant:
        if not self.client_id:
            raise CredentialError(self.name, "TWITTER_CLIENT_ID is not configured")
        if not credential.refresh_token:
            raise CredentialError(self.name, "no refresh token stored")

        auth = (self.client_id, self.client_secret) if self.client_secret else None
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.api_url}/oauth2/token",
                    data={
                        "grant_type": "refresh_token",
                        "refresh_token": credential.refresh_token,
                        "client_id": self.client_id,
                    },
                    auth=auth,
                )
        except httpx.TransportError as e:
            raise CredentialError(self.name, f"token refresh failed: {e}") from e

        body = self._json(response)
        if response.status_code >= 400 or not body.get("access_token"):
            raise CredentialError(self.name, f"token refresh failed: {_twitter_message(body, response.reason_phrase)}")

        logger.info("twitter_token_refreshed", brand_id=credential.brand_id)
        return TokenGrant(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token"),
            expires_in=body.get("expires_in"),
        )
