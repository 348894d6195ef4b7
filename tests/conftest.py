"""Pytest fixtures for postflow tests."""
import json
from datetime import timedelta
from typing import Callable, List, Optional

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from postflow.clock import utcnow
from postflow.infrastructure.database import init_db, session_factory as make_session_factory
from postflow.infrastructure.locks import KeyedLock
from postflow.infrastructure.media import MediaStore
from postflow.models.scheduled_post import ScheduledPost
from postflow.security import encrypt_token

BRAND = "brand-1"


# --- HTTP fakes ---

class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it was asked to send."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: List[httpx.Request] = []

        def _handle(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(_handle)

    def calls(self, path: str, method: Optional[str] = None) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path and (method is None or r.method == method)]


def json_body(request: httpx.Request) -> dict:
    return json.loads(request.content.decode() or "{}")


@pytest.fixture
def recording_transport() -> Callable[..., RecordingTransport]:
    return RecordingTransport


# --- database ---

@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'postflow-test.db'}")
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def locks() -> KeyedLock:
    return KeyedLock()


@pytest.fixture
def media_store(tmp_path) -> MediaStore:
    return MediaStore(upload_dir=str(tmp_path / "uploads"), public_base_url="https://media.test")


# --- builders ---

@pytest.fixture
def make_post(session_factory):
    """Factory fixture that stores a ScheduledPost and returns it."""
    async def _make(
        platforms=("twitter",),
        external_job_id=None,
        due_in=timedelta(minutes=-1),
        caption="Hello world",
        image_url="https://cdn.test/img.png",
        **fields,
    ) -> ScheduledPost:
        post = ScheduledPost(
            brand_id=fields.pop("brand_id", BRAND),
            content={"type": "image", "image_url": image_url, "caption": caption, "hashtags": ["launch"]},
            platforms=list(platforms),
            scheduled_time=utcnow() + due_in,
            external_job_id=external_job_id,
            delivered_platforms=fields.pop("delivered_platforms", []),
            **fields,
        )
        async with session_factory() as s:
            s.add(post)
            await s.commit()
            await s.refresh(post)
        return post

    return _make


@pytest.fixture
def seed_credential(session_factory):
    async def _seed(platform: str, access_token="tok", account_id="acct-1", refresh_token=None, expires_at=None, brand_id=BRAND):
        from postflow.models.social_credential import SocialCredential

        cred = SocialCredential(
            brand_id=brand_id,
            platform=platform,
            account_id=account_id,
            access_token_enc=encrypt_token(access_token),
            refresh_token_enc=encrypt_token(refresh_token),
            expires_at=expires_at,
        )
        async with session_factory() as s:
            s.add(cred)
            await s.commit()
            await s.refresh(cred)
        return cred

    return _seed


@pytest.fixture
def load_post(session_factory):
    async def _load(post_id) -> ScheduledPost:
        async with session_factory() as s:
            return await s.get(ScheduledPost, post_id)

    return _load
