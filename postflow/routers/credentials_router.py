# postflow/routers/credentials_router.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from postflow.dependencies.auth import get_current_brand
from postflow.dependencies.services import get_credential_service
from postflow.schemas.credential_schema import CredentialRead, CredentialUpsert
from postflow.schemas.post_schema import SUPPORTED_PLATFORMS, normalize_platforms
from postflow.services.credential_service import CredentialService

router = APIRouter(prefix="/credentials", tags=["credentials"])


def _platform(raw: str) -> str:
    platform = normalize_platforms([raw])[0] if raw.strip() else ""
    if platform not in SUPPORTED_PLATFORMS:
        raise HTTPException(status_code=404, detail=f"unsupported platform: {raw}")
    return platform


@router.get("/", response_model=List[CredentialRead])
async def list_credentials(svc: CredentialService = Depends(get_credential_service), brand_id: str = Depends(get_current_brand)):
    return await svc.list_connected(brand_id)


@router.put("/{platform}", response_model=CredentialRead)
async def save_credential(platform: str, payload: CredentialUpsert, svc: CredentialService = Depends(get_credential_service), brand_id: str = Depends(get_current_brand)):
    cred = await svc.save(brand_id, _platform(platform), payload)
    return CredentialRead(
        platform=cred.platform,
        account_id=cred.account_id,
        expires_at=cred.expires_at,
        has_refresh_token=bool(cred.refresh_token_enc),
        updated_at=cred.updated_at,
    )


@router.delete("/{platform}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_credential(platform: str, svc: CredentialService = Depends(get_credential_service), brand_id: str = Depends(get_current_brand)):
    if not await svc.disconnect(brand_id, _platform(platform)):
        raise HTTPException(status_code=404, detail="platform not connected")
