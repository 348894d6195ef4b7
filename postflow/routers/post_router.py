# postflow/routers/post_router.py
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from postflow.dependencies.auth import get_current_brand
from postflow.dependencies.services import get_post_service
from postflow.errors import PostNotFoundError, PostStateError, ProviderError, ValidationError
from postflow.schemas.post_schema import (
    CancelResult,
    ProviderJob,
    ScheduleCreate,
    ScheduledPostRead,
    ScheduleOutcome,
    ScheduleUpdate,
)
from postflow.services.post_service import PostService

router = APIRouter(prefix="/posts", tags=["posts"])


@router.post("/schedule", response_model=ScheduleOutcome)
async def schedule_post(payload: ScheduleCreate, svc: PostService = Depends(get_post_service), brand_id: str = Depends(get_current_brand)):
    return await svc.schedule_post(brand_id, payload)


@router.get("/", response_model=List[ScheduledPostRead])
async def list_posts(status: Optional[str] = None, svc: PostService = Depends(get_post_service), brand_id: str = Depends(get_current_brand)):
    return await svc.list_posts(brand_id, status=status)


@router.get("/provider/jobs", response_model=List[ProviderJob])
async def list_provider_jobs(svc: PostService = Depends(get_post_service), brand_id: str = Depends(get_current_brand)):
    try:
        return await svc.list_provider_jobs()
    except ProviderError as exc:
        raise HTTPException(status_code=502, detail=str(exc))


@router.get("/{post_id}", response_model=ScheduledPostRead)
async def get_post(post_id: uuid.UUID, svc: PostService = Depends(get_post_service), brand_id: str = Depends(get_current_brand)):
    try:
        return await svc.get_post(brand_id, post_id)
    except PostNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.post("/{post_id}/cancel", response_model=CancelResult)
async def cancel_post(post_id: uuid.UUID, svc: PostService = Depends(get_post_service), brand_id: str = Depends(get_current_brand)):
    try:
        post = await svc.cancel_post(brand_id, post_id)
        return CancelResult(id=post.id, status=post.status, detail=post.error)
    except PostNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except PostStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ProviderError as exc:
        raise HTTPException(status_code=502, detail=str(exc))


@router.patch("/{post_id}", response_model=ScheduledPostRead)
async def reschedule_post(post_id: uuid.UUID, payload: ScheduleUpdate, svc: PostService = Depends(get_post_service), brand_id: str = Depends(get_current_brand)):
    try:
        return await svc.reschedule_post(brand_id, post_id, payload)
    except PostNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except PostStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ProviderError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
