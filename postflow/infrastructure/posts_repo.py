# postflow/infrastructure/posts_repo.py
from typing import Optional, List
import uuid

import structlog
from sqlalchemy import update
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from postflow.clock import utcnow
from postflow.models.scheduled_post import ScheduledPost, PENDING, FAILED, TERMINAL_STATUSES

logger = structlog.get_logger(__name__)

DEFAULT_FAILURE_MESSAGE = "Delivery failed"


class PostsRepository:
    """
    Durable record of every submission. Status only ever moves out of
    pending: terminal writes are conditional on the row still being pending.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, post: ScheduledPost) -> ScheduledPost:
        self.session.add(post)
        await self.session.commit()
        await self.session.refresh(post)
        return post

    async def get(self, post_id: uuid.UUID, brand_id: Optional[str] = None) -> Optional[ScheduledPost]:
        q = select(ScheduledPost).where(ScheduledPost.id == post_id)
        if brand_id is not None:
            q = q.where(ScheduledPost.brand_id == brand_id)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list_by_brand(self, brand_id: str, status: Optional[str] = None) -> List[ScheduledPost]:
        q = select(ScheduledPost).where(ScheduledPost.brand_id == brand_id)
        if status:
            q = q.where(ScheduledPost.status == status)
        q = q.order_by(ScheduledPost.created_at.desc())
        res = await self.session.execute(q)
        return list(res.scalars().all())

    async def list_pending(self) -> List[ScheduledPost]:
        q = select(ScheduledPost).where(ScheduledPost.status == PENDING).order_by(ScheduledPost.scheduled_time)
        res = await self.session.execute(q)
        return list(res.scalars().all())

    async def mark_terminal(
        self,
        post: ScheduledPost,
        status: str,
        error: Optional[str] = None,
        delivered_platforms: Optional[List[str]] = None,
        attempts: Optional[int] = None,
    ) -> bool:
        """
        Move a pending post to success/failed. Returns False when the row had
        already left pending, in which case nothing is written.
        """
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"not a terminal status: {status}")
        if status == FAILED:
            error = error or DEFAULT_FAILURE_MESSAGE
        else:
            error = None

        stmt = (
            update(ScheduledPost)
            .where(ScheduledPost.id == post.id, ScheduledPost.status == PENDING)
            .values(
                status=status,
                error=error,
                delivered_platforms=list(post.delivered_platforms if delivered_platforms is None else delivered_platforms),
                attempts=post.attempts if attempts is None else attempts,
                updated_at=utcnow(),
            )
        )
        res = await self.session.execute(stmt)
        await self.session.commit()
        if res.rowcount == 0:
            logger.info("post_already_terminal", post_id=str(post.id), requested_status=status)
            return False
        await self.session.refresh(post)
        return True

    async def record_attempt(
        self,
        post: ScheduledPost,
        attempts: int,
        delivered_platforms: List[str],
        last_error: Optional[str],
    ) -> ScheduledPost:
        """Persist progress of a direct-delivery attempt that leaves the post pending."""
        stmt = (
            update(ScheduledPost)
            .where(ScheduledPost.id == post.id, ScheduledPost.status == PENDING)
            .values(
                attempts=attempts,
                delivered_platforms=list(delivered_platforms),
                last_error=last_error,
                updated_at=utcnow(),
            )
        )
        await self.session.execute(stmt)
        await self.session.commit()
        await self.session.refresh(post)
        return post

    async def update_fields(self, post: ScheduledPost, **fields) -> ScheduledPost:
        for key, value in fields.items():
            setattr(post, key, value)
        post.updated_at = utcnow()
        self.session.add(post)
        await self.session.commit()
        await self.session.refresh(post)
        return post
