# postflow/dependencies/services.py
from typing import Dict, Optional

from fastapi import Depends, Request
from sqlmodel.ext.asyncio.session import AsyncSession

from postflow.dependencies.db import get_session_dep
from postflow.infrastructure.credentials_repo import CredentialsRepository
from postflow.infrastructure.locks import KeyedLock
from postflow.infrastructure.upload_post_client import UploadPostClient
from postflow.platforms.base import PlatformAdapter
from postflow.services.credential_service import CredentialService
from postflow.services.post_service import PostService

# the objects below are built once at startup and kept on app.state


def get_publisher(request: Request) -> Optional[UploadPostClient]:
    return getattr(request.app.state, "publisher", None)


def get_adapters(request: Request) -> Dict[str, PlatformAdapter]:
    return getattr(request.app.state, "adapters", {})


def get_locks(request: Request) -> KeyedLock:
    return request.app.state.locks


def get_post_service(
    session: AsyncSession = Depends(get_session_dep),
    publisher: Optional[UploadPostClient] = Depends(get_publisher),
) -> PostService:
    return PostService(session, publisher=publisher)


def get_credential_service(
    session: AsyncSession = Depends(get_session_dep),
    adapters: Dict[str, PlatformAdapter] = Depends(get_adapters),
    locks: KeyedLock = Depends(get_locks),
) -> CredentialService:
    return CredentialService(CredentialsRepository(session), adapters, locks)
