# postflow/platforms/instagram.py
import os
from typing import Optional

import httpx
import structlog

from postflow.errors import PlatformPostError, ResolutionError
from postflow.infrastructure.media import MediaStore, is_data_uri
from postflow.platforms.base import PlatformAdapter
from postflow.schemas.credential_schema import Credential
from postflow.schemas.post_schema import MediaContent

logger = structlog.get_logger(__name__)

GRAPH_API_VERSION = os.getenv("GRAPH_API_VERSION", "v19.0")
GRAPH_API_URL = f"https://graph.facebook.com/{GRAPH_API_VERSION}"


def graph_error_message(body: dict, fallback: str) -> str:
    error = body.get("error")
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return fallback


class InstagramAdapter(PlatformAdapter):
    """
    Two-step Graph API publish: create a media container from a public
    image URL, then publish the container. The API only fetches media by
    URL, so embedded payloads are first written to the public upload dir.
    """

    name = "instagram"

    def __init__(
        self,
        media_store: Optional[MediaStore] = None,
        graph_url: str = GRAPH_API_URL,
        timeout: int = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout=timeout, transport=transport)
        self.media_store = media_store or MediaStore()
        self.graph_url = graph_url.rstrip("/")

    async def public_image_url(self, ref: str) -> str:
        if not ref:
            raise PlatformPostError(self.name, "an image is required")
        if not is_data_uri(ref):
            return ref
        try:
            return await self.media_store.publish_data_uri(ref, prefix="ig")
        except (ResolutionError, OSError) as e:
            raise PlatformPostError(self.name, f"could not publish image: {e}") from e

    async def post(self, content: MediaContent, credential: Credential) -> str:
        ig_account = self._require_account(credential)
        image_url = await self.public_image_url(content.image_url)

        create = await self._send(
            "POST",
            f"{self.graph_url}/{ig_account}/media",
            params={
                "image_url": image_url,
                "caption": content.full_text(),
                "access_token": credential.access_token,
            },
        )
        body = self._json(create)
        if create.status_code >= 400:
            raise self._error(create, f"Create Media Error: {graph_error_message(body, create.reason_phrase)}")
        creation_id = body.get("id")
        if not creation_id:
            raise PlatformPostError(self.name, "Failed to get media creation ID")
        logger.info("instagram_container_created", brand_id=credential.brand_id, creation_id=creation_id)

        publish = await self._send(
            "POST",
            f"{self.graph_url}/{ig_account}/media_publish",
            params={"creation_id": creation_id, "access_token": credential.access_token},
        )
        body = self._json(publish)
        if publish.status_code >= 400:
            raise self._error(publish, f"Publish Media Error: {graph_error_message(body, publish.reason_phrase)}")

        media_id = str(body.get("id") or "")
        logger.info("instagram_posted", brand_id=credential.brand_id, media_id=media_id)
        return media_id
