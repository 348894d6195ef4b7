# postflow/platforms/registry.py
from typing import Dict, Optional

import httpx

from postflow.infrastructure.media import MediaStore
from postflow.platforms.base import PlatformAdapter
from postflow.platforms.facebook import FacebookPageAdapter
from postflow.platforms.instagram import InstagramAdapter
from postflow.platforms.linkedin import LinkedInAdapter
from postflow.platforms.twitter import TwitterAdapter


def build_adapters(
    media_store: Optional[MediaStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, PlatformAdapter]:
    adapters = [
        TwitterAdapter(transport=transport),
        LinkedInAdapter(transport=transport),
        InstagramAdapter(media_store=media_store, transport=transport),
        FacebookPageAdapter(transport=transport),
    ]
    return {a.name: a for a in adapters}
