# postflow/infrastructure/upload_post_client.py
"""
Client for the Upload-Post scheduling API.

The provider accepts either uploaded media bytes or public media URLs, but
which multipart field names it accepts varies between photo, video and
platform combinations. Submissions therefore carry a few aliased fields and,
on the known "files or URLs are required" rejection, walk a fixed list of
alternate shapes before giving up.
"""
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from postflow.clock import to_iso_z, to_naive_utc, utcnow
from postflow.errors import (
    DeliveryError,
    ProviderError,
    ProviderRequestError,
    ResolutionError,
    TransientProviderError,
    ValidationError,
)
from postflow.infrastructure.media import MediaResolver, ResolvedMedia, is_well_formed_url
from postflow.schemas.post_schema import MediaContent, ProviderJob, SubmitResult

logger = structlog.get_logger(__name__)

UPLOAD_POST_BASE_URL = os.getenv("UPLOAD_POST_BASE_URL", "https://api.upload-post.com/api")
UPLOAD_POST_API_KEY = os.getenv("UPLOAD_POST_API_KEY")
UPLOAD_POST_USERNAME = os.getenv("UPLOAD_POST_USERNAME", "postflow")

MIN_LEAD_TIME = timedelta(minutes=5)
TITLE_MAX_LENGTH = 1000
DEFAULT_TITLE = "New Post"
MAX_RETRIES = 3  # after the first attempt: waits of 1s, 2s, 4s

# 400 bodies that mean "the media field was not where we expected it"
MISSING_MEDIA_SIGNATURES = (
    "photo files or urls are required",
    "files or urls are required",
    "file or url is required",
)

SUCCESS_STATUSES = frozenset({"published", "completed", "success"})
FAILURE_STATUSES = frozenset({"failed", "error"})

FormFields = List[Tuple[str, str]]
FormFiles = List[Tuple[str, Tuple[str, bytes, str]]]


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, ProviderError):
        return exc.retryable
    return False


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "provider_retry",
        attempt=retry_state.attempt_number,
        wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        error=str(exc),
    )


def _body_text(body: Any) -> str:
    return str(body).lower()


@dataclass
class UploadPlan:
    """
    Everything needed to build each submission shape for one post.
    `scheduled` is set per attempt and lands in every shape's fields.
    """
    endpoint: str
    common_fields: FormFields
    media_ref: str
    is_video: bool
    scheduled_time: datetime
    media: Optional[ResolvedMedia] = None
    filename: str = "upload.jpg"
    mime_type: str = "application/octet-stream"
    scheduled: Optional[datetime] = None

    @property
    def base_fields(self) -> FormFields:
        return self.common_fields + [("scheduled_date", to_iso_z(self.scheduled or self.scheduled_time))]

    @property
    def primary_field(self) -> str:
        return "video" if self.is_video else "photos[]"

    @property
    def has_public_url(self) -> bool:
        return is_well_formed_url(self.media_ref)

    def _file(self) -> Tuple[str, bytes, str]:
        return (self.filename, self.media.data, self.mime_type)

    def _url_fields(self) -> FormFields:
        fields: FormFields = [("url", self.media_ref)]
        if not self.is_video:
            fields.append(("photo_urls[]", self.media_ref))
        return fields

    def primary(self) -> Tuple[str, FormFields, FormFiles]:
        fields = list(self.base_fields)
        files: FormFiles = []
        if self.media is None:
            fields += self._url_fields()
            return "url_only", fields, files
        files.append((self.primary_field, self._file()))
        if not self.is_video:
            files.append(("photo", self._file()))
            files.append(("photos", self._file()))
            if self.has_public_url:
                fields.append(("photo_urls[]", self.media_ref))
        return "primary", fields, files

    def fallbacks(self) -> List[Tuple[str, FormFields, FormFiles]]:
        shapes = []
        if self.has_public_url and self.media is not None:
            shapes.append(("url_only", list(self.base_fields) + self._url_fields(), []))
        if self.media is not None:
            shapes.append(("single_file", list(self.base_fields), [("file", self._file())]))
            if not self.is_video:
                shapes.append(("photo_aliases", list(self.base_fields), [("photo", self._file()), ("photos", self._file())]))
        return shapes


class UploadPostClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        username: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: int = 60,
        resolver: Optional[MediaResolver] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_retries: int = MAX_RETRIES,
        retry_wait=None,
    ):
        self.api_key = api_key or UPLOAD_POST_API_KEY
        self.username = username or UPLOAD_POST_USERNAME
        self.base_url = (base_url or UPLOAD_POST_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.resolver = resolver or MediaResolver(timeout=timeout, transport=transport)
        self.max_retries = max_retries
        self.retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=8)
        self._registered: set = set()

        if not self.api_key:
            raise ProviderError("UPLOAD_POST_API_KEY is not configured")

    @classmethod
    def from_env(cls, **kwargs) -> Optional["UploadPostClient"]:
        if not (kwargs.get("api_key") or UPLOAD_POST_API_KEY):
            return None
        return cls(**kwargs)

    # --- plumbing ---
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Apikey {self.api_key}"}

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, headers=self._headers(), timeout=self.timeout, transport=self.transport
            ) as client:
                return await client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise TransientProviderError(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return {"message": response.text}

    @staticmethod
    def _raise_for_status(response: httpx.Response, body: Any, action: str) -> None:
        if response.is_success:
            return
        message = None
        if isinstance(body, dict):
            message = body.get("error") or body.get("message")
        message = message or response.reason_phrase or f"{action} failed"
        logger.error("provider_error", action=action, status=response.status_code, body=body)
        raise ProviderRequestError(response.status_code, str(message), body if isinstance(body, dict) else None)

    async def _with_retry(self, action: str, fn: Callable[..., Awaitable[Any]], *args) -> Any:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self.retry_wait,
            retry=retry_if_exception(_is_retryable),
            before_sleep=_log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await fn(*args)

    # --- profile ---
    async def ensure_profile(self, force: bool = False) -> bool:
        """
        Register the configured username with the provider once. A 409 or an
        "already exists" body counts as registered. Failures are logged and
        do not block submission.
        """
        if self.username in self._registered and not force:
            return True
        try:
            response = await self._request("POST", "/uploadposts/users", json={"username": self.username})
        except TransientProviderError as e:
            logger.warning("profile_registration_failed", username=self.username, error=str(e))
            return False

        body = self._json(response)
        if response.is_success:
            logger.info("profile_registered", username=self.username)
        elif response.status_code == 409 or "already exists" in _body_text(body):
            logger.info("profile_already_exists", username=self.username)
        else:
            logger.warning("profile_registration_unexpected", username=self.username, status=response.status_code, body=body)
            return False
        self._registered.add(self.username)
        return True

    # --- submission ---
    def clamp_schedule(self, scheduled_time: datetime, now: Optional[datetime] = None) -> datetime:
        now = now or utcnow()
        earliest = now + MIN_LEAD_TIME
        if earliest.microsecond:
            # second precision on the wire; round up so we never land under the minimum
            earliest = earliest.replace(microsecond=0) + timedelta(seconds=1)
        scheduled = to_naive_utc(scheduled_time)
        if scheduled < earliest:
            logger.info("schedule_time_adjusted", requested=scheduled.isoformat(), adjusted=earliest.isoformat())
            return earliest
        return scheduled

    async def _resolve_media(self, ref: str) -> Optional[ResolvedMedia]:
        """None means: send the public URL instead of bytes."""
        try:
            media = await self.resolver.resolve(ref)
        except ResolutionError as e:
            if is_well_formed_url(ref):
                logger.warning("media_resolution_failed_using_url", url=ref, error=str(e))
                return None
            raise
        if media.empty:
            if is_well_formed_url(ref):
                logger.warning("media_resolution_empty_using_url", url=ref)
                return None
            raise ResolutionError("Failed to resolve file and cannot send local URL.")
        return media

    def _common_fields(self, content: MediaContent, platforms: List[str]) -> FormFields:
        title = content.caption[:TITLE_MAX_LENGTH] if content.caption else DEFAULT_TITLE
        fields: FormFields = [
            ("title", title),
            ("caption", content.full_text()),
            ("timezone", "UTC"),
            ("user", self.username),
        ]
        fields += [("platform[]", p) for p in platforms]
        return fields

    async def _post_form(self, endpoint: str, fields: FormFields, files: FormFiles) -> Tuple[httpx.Response, Any]:
        data: Dict[str, Any] = {}
        for key, value in fields:
            if key in data:
                existing = data[key]
                data[key] = (existing if isinstance(existing, list) else [existing]) + [value]
            else:
                data[key] = value
        response = await self._request("POST", endpoint, data=data, files=files or None)
        return response, self._json(response)

    @staticmethod
    def _is_missing_media_quirk(response: httpx.Response, body: Any) -> bool:
        if response.status_code != 400:
            return False
        text = _body_text(body)
        return any(sig in text for sig in MISSING_MEDIA_SIGNATURES)

    async def _upload(self, plan: UploadPlan) -> Any:
        plan.scheduled = self.clamp_schedule(plan.scheduled_time)
        name, fields, files = plan.primary()
        logger.info(
            "provider_upload",
            endpoint=plan.endpoint,
            shape=name,
            scheduled_date=to_iso_z(plan.scheduled),
            size=len(plan.media.data) if plan.media else 0,
        )
        response, body = await self._post_form(plan.endpoint, fields, files)
        if response.is_success:
            return body

        if self._is_missing_media_quirk(response, body):
            logger.warning("provider_missing_media_rejection", endpoint=plan.endpoint, body=body)
            for name, fields, files in plan.fallbacks():
                logger.info("provider_upload_fallback", endpoint=plan.endpoint, shape=name)
                response, body = await self._post_form(plan.endpoint, fields, files)
                if response.is_success:
                    return body

        self._raise_for_status(response, body, "upload")

    async def _send(self, content: MediaContent, platforms: List[str], scheduled_time: datetime) -> Tuple[Dict[str, Any], datetime]:
        """Upload with retries; returns the body and the schedule time the accepted attempt carried."""
        if not content.image_url:
            raise ValidationError("Image URL is required for scheduling.")
        if not platforms:
            raise ValidationError("At least one platform is required for scheduling.")

        await self.ensure_profile()

        is_video = content.type == "video"
        media = await self._resolve_media(content.image_url)
        plan = UploadPlan(
            endpoint="/upload_videos" if is_video else "/upload_photos",
            common_fields=self._common_fields(content, platforms),
            media_ref=content.image_url,
            is_video=is_video,
            scheduled_time=scheduled_time,
            media=media,
        )
        if media is not None:
            plan.filename = media.filename(is_video)
            plan.mime_type = media.mime_type

        body = await self._with_retry("submit", self._upload, plan)
        if not isinstance(body, dict):
            body = {"data": body}
        body.setdefault("scheduled_date", to_iso_z(plan.scheduled))
        return body, plan.scheduled

    async def create_scheduled_post(self, content: MediaContent, platforms: List[str], scheduled_time: datetime) -> Dict[str, Any]:
        """Raising variant of submit(); returns the provider's response body."""
        body, _ = await self._send(content, platforms, scheduled_time)
        return body

    async def submit(self, content: MediaContent, platforms: List[str], scheduled_time: datetime) -> SubmitResult:
        """
        Submit a post for scheduled publishing. Never raises for delivery
        problems: failures come back as SubmitResult(success=False).
        """
        try:
            body, scheduled = await self._send(content, platforms, scheduled_time)
        except DeliveryError as e:
            logger.warning("provider_submit_failed", error=str(e), error_type=type(e).__name__)
            return SubmitResult(success=False, error=str(e))

        job_id = body.get("job_id") or body.get("request_id")
        result = SubmitResult(
            success=bool(body.get("success", True)),
            job_id=str(job_id) if job_id else None,
            scheduled_date=body.get("scheduled_date"),
            scheduled_time=scheduled,
            error=body.get("error"),
            raw=body,
        )
        logger.info("provider_submit_accepted", job_id=result.job_id, scheduled_date=result.scheduled_date)
        return result

    # --- job management ---
    async def get_status(self, job_id: str) -> Dict[str, Any]:
        async def _op():
            response = await self._request("GET", "/uploadposts/status", params={"job_id": job_id})
            body = self._json(response)
            self._raise_for_status(response, body, "status")
            return body if isinstance(body, dict) else {"status": None, "data": body}

        return await self._with_retry("status", _op)

    async def list_scheduled(self) -> List[ProviderJob]:
        async def _op():
            response = await self._request("GET", "/uploadposts/schedule")
            body = self._json(response)
            self._raise_for_status(response, body, "list")
            return body

        body = await self._with_retry("list", _op)
        if isinstance(body, dict):
            body = body.get("scheduled_posts") or body.get("jobs") or []
        return [ProviderJob.model_validate(item) for item in body]

    async def cancel(self, job_id: str) -> None:
        async def _op():
            response = await self._request("DELETE", f"/uploadposts/schedule/{job_id}")
            self._raise_for_status(response, self._json(response), "cancel")

        await self._with_retry("cancel", _op)
        logger.info("provider_job_cancelled", job_id=job_id)

    async def update(
        self,
        job_id: str,
        scheduled_date: Optional[datetime] = None,
        title: Optional[str] = None,
        caption: Optional[str] = None,
    ) -> Dict[str, Any]:
        updates: Dict[str, Any] = {}
        if title is not None:
            updates["title"] = title[:TITLE_MAX_LENGTH]
        if caption is not None:
            updates["caption"] = caption
        if not updates and scheduled_date is None:
            raise ValidationError("Nothing to update.")

        async def _op():
            if scheduled_date is not None:
                updates["scheduled_date"] = to_iso_z(self.clamp_schedule(scheduled_date))
            response = await self._request("PATCH", f"/uploadposts/schedule/{job_id}", json=updates)
            body = self._json(response)
            self._raise_for_status(response, body, "update")
            return body

        body = await self._with_retry("update", _op)
        logger.info("provider_job_updated", job_id=job_id, fields=sorted(updates))
        return body if isinstance(body, dict) else {"data": body}


def map_job_status(payload: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    """
    Provider status payload -> ("success" | "failed" | None, error).
    None means the job is still in flight.
    """
    status = str(payload.get("status") or "").lower()
    if status in SUCCESS_STATUSES:
        return "success", None
    if status in FAILURE_STATUSES:
        return "failed", payload.get("error") or "External job failed"
    return None, None
