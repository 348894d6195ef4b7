# postflow/platforms/facebook.py
from typing import Optional

import httpx
import structlog

from postflow.infrastructure.media import is_public_url
from postflow.platforms.base import PlatformAdapter
from postflow.platforms.instagram import GRAPH_API_URL, graph_error_message
from postflow.schemas.credential_schema import Credential
from postflow.schemas.post_schema import MediaContent

logger = structlog.get_logger(__name__)


class FacebookPageAdapter(PlatformAdapter):
    """Page post: a photo post when the media is a public URL, a feed message otherwise."""

    name = "facebook"

    def __init__(self, graph_url: str = GRAPH_API_URL, timeout: int = 30, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(timeout=timeout, transport=transport)
        self.graph_url = graph_url.rstrip("/")

    async def post(self, content: MediaContent, credential: Credential) -> str:
        page_id = self._require_account(credential)
        text = content.full_text()

        if content.type != "video" and is_public_url(content.image_url):
            url = f"{self.graph_url}/{page_id}/photos"
            data = {"url": content.image_url, "caption": text, "access_token": credential.access_token}
        else:
            url = f"{self.graph_url}/{page_id}/feed"
            data = {"message": text, "access_token": credential.access_token}

        response = await self._send("POST", url, data=data)
        body = self._json(response)
        if response.status_code >= 400:
            raise self._error(response, graph_error_message(body, response.reason_phrase))

        post_id = str(body.get("post_id") or body.get("id") or "")
        logger.info("facebook_posted", brand_id=credential.brand_id, post_id=post_id)
        return post_id
