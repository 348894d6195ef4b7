"""Tests for the scheduled post store."""
import pytest

from conftest import BRAND
from postflow.infrastructure.posts_repo import PostsRepository
from postflow.models.scheduled_post import FAILED, PENDING, SUCCESS


@pytest.mark.asyncio
async def test_terminal_status_never_changes(session, make_post, load_post):
    post = await make_post()
    repo = PostsRepository(session)
    post = await repo.get(post.id)

    assert await repo.mark_terminal(post, SUCCESS) is True
    assert await repo.mark_terminal(post, FAILED, "late failure") is False

    stored = await load_post(post.id)
    assert stored.status == SUCCESS
    assert stored.error is None


@pytest.mark.asyncio
async def test_failed_always_carries_an_error(session, make_post):
    post = await make_post()
    repo = PostsRepository(session)
    post = await repo.get(post.id)

    await repo.mark_terminal(post, FAILED)

    assert post.status == FAILED
    assert post.error == "Delivery failed"


@pytest.mark.asyncio
async def test_mark_terminal_rejects_pending(session, make_post):
    post = await make_post()
    repo = PostsRepository(session)
    with pytest.raises(ValueError):
        await repo.mark_terminal(await repo.get(post.id), PENDING)


@pytest.mark.asyncio
async def test_record_attempt_keeps_post_pending(session, make_post):
    post = await make_post(platforms=["twitter", "linkedin"])
    repo = PostsRepository(session)
    post = await repo.get(post.id)

    await repo.record_attempt(post, attempts=1, delivered_platforms=["twitter"], last_error="linkedin: 503")

    assert post.status == PENDING
    assert post.attempts == 1
    assert post.remaining_platforms() == ["linkedin"]
    assert post.last_error == "linkedin: 503"


@pytest.mark.asyncio
async def test_listing(session, make_post):
    await make_post()
    await make_post(status=SUCCESS)
    await make_post(brand_id="someone-else")
    repo = PostsRepository(session)

    assert len(await repo.list_by_brand(BRAND)) == 2
    assert len(await repo.list_by_brand(BRAND, status=SUCCESS)) == 1
    assert len(await repo.list_pending()) == 2
    assert await repo.get((await repo.list_pending())[0].id, brand_id="nobody") is None
