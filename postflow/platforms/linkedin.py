# postflow/platforms/linkedin.py
import structlog

from postflow.platforms.base import PlatformAdapter
from postflow.schemas.credential_schema import Credential
from postflow.schemas.post_schema import MediaContent

logger = structlog.get_logger(__name__)

LINKEDIN_UGC_URL = "https://api.linkedin.com/v2/ugcPosts"


class LinkedInAdapter(PlatformAdapter):
    name = "linkedin"

    def build_share(self, content: MediaContent, person_urn: str) -> dict:
        return {
            "author": person_urn,
            "lifecycleState": "PUBLISHED",
            "specificContent": {
                "com.linkedin.ugc.ShareContent": {
                    "shareCommentary": {"text": content.full_text()},
                    "shareMediaCategory": "NONE",
                }
            },
            "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": "PUBLIC"},
        }

    async def post(self, content: MediaContent, credential: Credential) -> str:
        person_urn = self._require_account(credential)
        response = await self._send(
            "POST",
            LINKEDIN_UGC_URL,
            headers={
                "Authorization": f"Bearer {credential.access_token}",
                "X-Restli-Protocol-Version": "2.0.0",
            },
            json=self.build_share(content, person_urn),
        )
        if response.status_code >= 400:
            body = self._json(response)
            raise self._error(response, body.get("message") or response.reason_phrase)

        share_id = response.headers.get("x-restli-id") or self._json(response).get("id", "")
        logger.info("linkedin_posted", brand_id=credential.brand_id, share_id=share_id)
        return share_id
