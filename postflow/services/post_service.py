# postflow/services/post_service.py
import os
import uuid
from datetime import datetime
from typing import List, Optional

import structlog
from sqlmodel.ext.asyncio.session import AsyncSession

from postflow.errors import PostNotFoundError, PostStateError, ValidationError
from postflow.infrastructure.posts_repo import PostsRepository
from postflow.infrastructure.upload_post_client import UploadPostClient
from postflow.models.scheduled_post import ScheduledPost, PENDING, FAILED
from postflow.schemas.post_schema import (
    MediaContent,
    ProviderJob,
    ScheduleCreate,
    ScheduledPostRead,
    ScheduleOutcome,
    ScheduleUpdate,
)

logger = structlog.get_logger(__name__)

EXTERNAL_FALLBACK_TO_DIRECT = os.getenv("EXTERNAL_FALLBACK_TO_DIRECT", "true").lower() in ("1", "true", "yes")
CANCELLED_MESSAGE = "Cancelled by user"


class PostService:
    def __init__(
        self,
        session: AsyncSession,
        publisher: Optional[UploadPostClient] = None,
        fallback_to_direct: bool = EXTERNAL_FALLBACK_TO_DIRECT,
    ):
        self.session = session
        self.posts = PostsRepository(session)
        self.publisher = publisher
        self.fallback_to_direct = fallback_to_direct

    async def schedule_post(self, brand_id: str, payload: ScheduleCreate) -> ScheduleOutcome:
        """
        Hand the post to the provider when one is configured, otherwise store
        it for direct delivery. Provider rejections come back in the outcome.
        """
        provider_error: Optional[str] = None
        if self.publisher is not None:
            result = await self.publisher.submit(payload.content, payload.platforms, payload.scheduled_time)
            if result.success and result.job_id:
                post = await self._store(
                    brand_id,
                    payload,
                    external_job_id=result.job_id,
                    scheduled_time=result.scheduled_time,
                )
                logger.info("post_scheduled", post_id=str(post.id), brand_id=brand_id, delivery="external", job_id=result.job_id)
                return ScheduleOutcome(success=True, delivery="external", post=ScheduledPostRead.model_validate(post))

            provider_error = result.error or "provider did not return a job id"
            logger.warning("provider_rejected_post", brand_id=brand_id, error=provider_error, fallback=self.fallback_to_direct)
            if not self.fallback_to_direct:
                return ScheduleOutcome(success=False, error=provider_error)

        post = await self._store(brand_id, payload)
        logger.info("post_scheduled", post_id=str(post.id), brand_id=brand_id, delivery="direct", platforms=post.platforms)
        return ScheduleOutcome(
            success=True,
            delivery="direct",
            post=ScheduledPostRead.model_validate(post),
            provider_error=provider_error,
        )

    async def _store(
        self,
        brand_id: str,
        payload: ScheduleCreate,
        external_job_id: Optional[str] = None,
        scheduled_time: Optional[datetime] = None,
    ) -> ScheduledPost:
        post = ScheduledPost(
            brand_id=brand_id,
            content=payload.content.model_dump(),
            platforms=list(payload.platforms),
            scheduled_time=scheduled_time or payload.scheduled_time,
            status=PENDING,
            external_job_id=external_job_id,
            delivered_platforms=[],
        )
        return await self.posts.create(post)

    async def list_posts(self, brand_id: str, status: Optional[str] = None) -> List[ScheduledPost]:
        return await self.posts.list_by_brand(brand_id, status=status)

    async def get_post(self, brand_id: str, post_id: uuid.UUID) -> ScheduledPost:
        post = await self.posts.get(post_id, brand_id=brand_id)
        if not post:
            raise PostNotFoundError("post not found")
        return post

    async def _get_pending(self, brand_id: str, post_id: uuid.UUID) -> ScheduledPost:
        post = await self.get_post(brand_id, post_id)
        if post.status != PENDING:
            raise PostStateError(f"post is already {post.status}")
        return post

    async def cancel_post(self, brand_id: str, post_id: uuid.UUID) -> ScheduledPost:
        post = await self._get_pending(brand_id, post_id)
        if post.external_job_id:
            if self.publisher is None:
                raise PostStateError("post was scheduled with the provider, which is not configured")
            await self.publisher.cancel(post.external_job_id)

        if not await self.posts.mark_terminal(post, FAILED, CANCELLED_MESSAGE):
            raise PostStateError("post finished before it could be cancelled")
        logger.info("post_cancelled", post_id=str(post.id), brand_id=brand_id, job_id=post.external_job_id)
        return post

    async def reschedule_post(self, brand_id: str, post_id: uuid.UUID, payload: ScheduleUpdate) -> ScheduledPost:
        post = await self._get_pending(brand_id, post_id)
        if payload.scheduled_time is None and payload.caption is None and payload.title is None:
            raise PostStateError("nothing to update")

        if payload.title is not None and not post.external_job_id:
            raise ValidationError("title only applies to provider-scheduled posts")

        scheduled_time = payload.scheduled_time
        if post.external_job_id:
            if self.publisher is None:
                raise PostStateError("post was scheduled with the provider, which is not configured")
            caption = None
            if payload.caption is not None:
                # the provider holds caption and hashtags as one text
                caption = MediaContent.model_validate({**post.content, "caption": payload.caption}).full_text()
            await self.publisher.update(
                post.external_job_id,
                scheduled_date=scheduled_time,
                title=payload.title,
                caption=caption,
            )
            if scheduled_time is not None:
                scheduled_time = self.publisher.clamp_schedule(scheduled_time)

        fields = {}
        if scheduled_time is not None:
            fields["scheduled_time"] = scheduled_time
        if payload.caption is not None:
            fields["content"] = {**post.content, "caption": payload.caption}
        if fields:
            post = await self.posts.update_fields(post, **fields)
        logger.info("post_rescheduled", post_id=str(post.id), brand_id=brand_id, fields=sorted(fields))
        return post

    async def list_provider_jobs(self) -> List[ProviderJob]:
        if self.publisher is None:
            return []
        return await self.publisher.list_scheduled()
