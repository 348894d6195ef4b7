# postflow/services/reconciler.py
"""
Background loop that moves pending posts to a terminal status.

One tick: load pending posts, poll the provider for those with an external
job id, and deliver due direct-path posts through the platform adapters.
Ticks never overlap: the next one is scheduled only after the previous one
returns. The owning application holds a single Reconciler and calls
start()/stop() from its lifecycle hooks.
"""
import asyncio
import os
from dataclasses import dataclass, asdict
from typing import Callable, Dict, List, Optional

import pydantic
import structlog

from postflow.clock import utcnow
from postflow.errors import CredentialError, PlatformPostError
from postflow.infrastructure.credentials_repo import CredentialsRepository
from postflow.infrastructure.locks import KeyedLock
from postflow.infrastructure.posts_repo import PostsRepository
from postflow.infrastructure.upload_post_client import UploadPostClient, map_job_status
from postflow.models.scheduled_post import ScheduledPost, SUCCESS, FAILED
from postflow.platforms.base import PlatformAdapter
from postflow.schemas.post_schema import MediaContent
from postflow.services.credential_service import CredentialService

logger = structlog.get_logger(__name__)

RECONCILE_INTERVAL_SECONDS = float(os.getenv("RECONCILE_INTERVAL_SECONDS", "60"))
DIRECT_MAX_ATTEMPTS = int(os.getenv("DIRECT_MAX_ATTEMPTS", "3"))
TICK_LOCK_KEY = "reconcile-tick"


@dataclass
class ReconcileReport:
    succeeded: int = 0
    failed: int = 0
    pending: int = 0
    errors: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


class Reconciler:
    def __init__(
        self,
        session_factory: Callable,
        adapters: Dict[str, PlatformAdapter],
        locks: KeyedLock,
        publisher: Optional[UploadPostClient] = None,
        interval_seconds: float = RECONCILE_INTERVAL_SECONDS,
        max_direct_attempts: int = DIRECT_MAX_ATTEMPTS,
        clock: Callable = utcnow,
    ):
        self.session_factory = session_factory
        self.adapters = adapters
        self.locks = locks
        self.publisher = publisher
        self.interval_seconds = interval_seconds
        self.max_direct_attempts = max(1, max_direct_attempts)
        self.clock = clock
        self._task: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Event] = None

    # --- lifecycle ---
    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Start the loop on the running event loop. Calling it again is a no-op."""
        if self.running:
            logger.debug("reconciler_already_running")
            return False
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="postflow-reconciler")
        return True

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _loop(self) -> None:
        logger.info("reconciler_started", interval_seconds=self.interval_seconds)
        try:
            while not self._stopping.is_set():
                try:
                    report = await self.run_once()
                    logger.info("reconcile_tick_done", **report.as_dict())
                except Exception as e:
                    logger.exception("reconcile_tick_failed", error=str(e))
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    pass
        finally:
            logger.info("reconciler_stopped")

    # --- one tick ---
    async def run_once(self) -> ReconcileReport:
        report = ReconcileReport()
        async with self.locks.hold(TICK_LOCK_KEY):
            async with self.session_factory() as session:
                pending = await PostsRepository(session).list_pending()
                now = self.clock()
                external = [p.id for p in pending if p.external_job_id]
                due = [p.id for p in pending if not p.external_job_id and p.scheduled_time <= now]
                report.pending += len(pending) - len(external) - len(due)
            logger.debug("reconcile_tick", pending=len(pending), external=len(external), due_direct=len(due))

            for post_id in external:
                await self._isolated(post_id, report, self._reconcile_external)
            for post_id in due:
                await self._isolated(post_id, report, self._deliver_direct)
        return report

    async def _isolated(self, post_id, report: ReconcileReport, handler) -> None:
        """Run one post's work in its own session; a failure is logged and counted."""
        try:
            async with self.session_factory() as session:
                posts = PostsRepository(session)
                post = await posts.get(post_id)
                if post is None or post.is_terminal:
                    return
                credentials = CredentialService(CredentialsRepository(session), self.adapters, self.locks)
                await handler(posts, credentials, post, report)
        except Exception as e:
            report.errors += 1
            logger.exception("reconcile_post_failed", post_id=str(post_id), handler=handler.__name__, error=str(e))

    async def _reconcile_external(
        self,
        posts: PostsRepository,
        credentials: CredentialService,
        post: ScheduledPost,
        report: ReconcileReport,
    ) -> None:
        if self.publisher is None:
            logger.warning("external_post_without_provider", post_id=str(post.id), job_id=post.external_job_id)
            report.pending += 1
            return

        try:
            payload = await self.publisher.get_status(post.external_job_id)
        except Exception as e:
            report.errors += 1
            logger.error("external_status_check_failed", post_id=str(post.id), job_id=post.external_job_id, error=str(e))
            return

        outcome, error = map_job_status(payload)
        if outcome is None:
            report.pending += 1
            return
        if await posts.mark_terminal(post, outcome, error):
            if outcome == SUCCESS:
                report.succeeded += 1
                logger.info("external_job_completed", post_id=str(post.id), job_id=post.external_job_id)
            else:
                report.failed += 1
                logger.info("external_job_failed", post_id=str(post.id), job_id=post.external_job_id, error=error)

    async def _deliver_direct(
        self,
        posts: PostsRepository,
        credentials: CredentialService,
        post: ScheduledPost,
        report: ReconcileReport,
    ) -> None:
        try:
            content = MediaContent.model_validate(post.content)
        except pydantic.ValidationError as e:
            report.failed += 1
            await posts.mark_terminal(post, FAILED, f"stored content is invalid: {e.error_count()} error(s)")
            return

        delivered: List[str] = list(post.delivered_platforms or [])
        errors: List[str] = []
        all_transient = True

        for platform in post.remaining_platforms():
            try:
                adapter = self.adapters.get(platform)
                if adapter is None:
                    raise PlatformPostError(platform, "direct posting is not supported")
                credential = await credentials.resolve(post.brand_id, platform)
                await adapter.post(content, credential)
                delivered.append(platform)
                logger.info("direct_platform_delivered", post_id=str(post.id), platform=platform)
            except PlatformPostError as e:
                errors.append(f"{platform}: {e.message}")
                all_transient = all_transient and e.transient
                logger.warning("direct_platform_failed", post_id=str(post.id), platform=platform, error=e.message, transient=e.transient)
            except CredentialError as e:
                errors.append(f"{platform}: {e.message}")
                all_transient = False
                logger.warning("direct_platform_credential_failed", post_id=str(post.id), platform=platform, error=e.message)
            except Exception as e:
                errors.append(f"{platform}: {e}")
                all_transient = False
                logger.exception("direct_platform_error", post_id=str(post.id), platform=platform)

        attempts = post.attempts + 1
        if not errors:
            if await posts.mark_terminal(post, SUCCESS, delivered_platforms=delivered, attempts=attempts):
                report.succeeded += 1
            return

        summary = "; ".join(errors)
        if all_transient and attempts < self.max_direct_attempts:
            await posts.record_attempt(post, attempts=attempts, delivered_platforms=delivered, last_error=summary)
            report.pending += 1
            logger.info("direct_post_will_retry", post_id=str(post.id), attempts=attempts, error=summary)
            return

        if await posts.mark_terminal(post, FAILED, summary, delivered_platforms=delivered, attempts=attempts):
            report.failed += 1
            logger.info("direct_post_failed", post_id=str(post.id), attempts=attempts, error=summary)
