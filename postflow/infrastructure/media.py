# postflow/infrastructure/media.py
import asyncio
import base64
import binascii
import os
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import httpx
import structlog

from postflow.errors import ResolutionError

logger = structlog.get_logger(__name__)

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "./public/uploads")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")

DATA_URI_RE = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)

MIME_TO_EXT = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
}
EXT_TO_MIME = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
}


@dataclass
class ResolvedMedia:
    data: bytes
    mime_type: str

    @property
    def empty(self) -> bool:
        return not self.data

    def filename(self, is_video: bool) -> str:
        ext = MIME_TO_EXT.get(self.mime_type)
        if ext:
            return f"upload{ext}"
        return "upload.mp4" if is_video else "upload.jpg"


def is_data_uri(ref: str) -> bool:
    return ref.startswith("data:")


def is_public_url(ref: str) -> bool:
    return ref.startswith("http://") or ref.startswith("https://")


def is_well_formed_url(ref: str) -> bool:
    """An http(s) reference that parses and names a host."""
    if not is_public_url(ref):
        return False
    try:
        return bool(httpx.URL(ref).host)
    except (httpx.InvalidURL, ValueError):
        return False


def decode_data_uri(ref: str) -> ResolvedMedia:
    match = DATA_URI_RE.match(ref)
    if not match:
        raise ResolutionError("Invalid data URI format")
    try:
        data = base64.b64decode(match.group(2), validate=False)
    except (binascii.Error, ValueError) as e:
        raise ResolutionError(f"Invalid base64 payload: {e}") from e
    return ResolvedMedia(data=data, mime_type=match.group(1))


class MediaStore:
    """
    Local directory served under /uploads. Holds media that platforms must
    fetch by public URL, and lets the resolver skip a network round trip
    for files we host ourselves.
    """

    def __init__(self, upload_dir: str = UPLOAD_DIR, public_base_url: str = PUBLIC_BASE_URL):
        self.upload_dir = Path(upload_dir)
        self.public_base_url = public_base_url.rstrip("/")

    def local_path_for(self, url: str) -> Optional[Path]:
        if not is_public_url(url) or "/uploads/" not in url:
            return None
        name = os.path.basename(urlparse(url).path)
        if not name:
            return None
        path = self.upload_dir / name
        return path if path.is_file() else None

    async def read_local(self, url: str) -> Optional[ResolvedMedia]:
        path = self.local_path_for(url)
        if path is None:
            return None
        data = await asyncio.to_thread(path.read_bytes)
        return ResolvedMedia(data=data, mime_type=EXT_TO_MIME.get(path.suffix.lower(), "application/octet-stream"))

    async def publish_data_uri(self, ref: str, prefix: str = "media") -> str:
        """Write an embedded payload to the upload dir and return its public URL."""
        media = decode_data_uri(ref)
        ext = MIME_TO_EXT.get(media.mime_type, ".bin")
        filename = f"{prefix}-{uuid.uuid4()}{ext}"
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread((self.upload_dir / filename).write_bytes, media.data)
        url = f"{self.public_base_url}/uploads/{filename}"
        logger.info("media_published", url=url, size=len(media.data))
        return url


class MediaResolver:
    def __init__(self, store: Optional[MediaStore] = None, timeout: int = 60, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.store = store or MediaStore()
        self.timeout = timeout
        self.transport = transport

    async def resolve(self, ref: str) -> ResolvedMedia:
        """
        data: uri -> decoded bytes; our own /uploads/ url -> disk; anything
        else -> HTTP GET. Raises ResolutionError.
        """
        if is_data_uri(ref):
            return decode_data_uri(ref)

        try:
            local = await self.store.read_local(ref)
        except OSError as e:
            logger.warning("media_local_read_failed", url=ref, error=str(e))
            local = None
        if local is not None:
            return local

        if not is_public_url(ref):
            raise ResolutionError(f"Cannot resolve media reference: {ref[:80]}")
        if not is_well_formed_url(ref):
            raise ResolutionError(f"Invalid media URL: {ref[:80]}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport, follow_redirects=True) as client:
                r = await client.get(ref)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            raise ResolutionError(f"Failed to fetch media from {ref}: {e}") from e
        if r.status_code >= 400:
            raise ResolutionError(f"Failed to fetch media from {ref} ({r.status_code})")
        mime = r.headers.get("content-type", "application/octet-stream").split(";")[0].strip()
        return ResolvedMedia(data=r.content, mime_type=mime)
