# postflow/services/credential_service.py
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import structlog

from postflow.clock import to_naive_utc, utcnow
from postflow.errors import CredentialError, CredentialNotFoundError
from postflow.infrastructure.credentials_repo import CredentialsRepository
from postflow.infrastructure.locks import KeyedLock
from postflow.models.social_credential import SocialCredential
from postflow.platforms.base import PlatformAdapter
from postflow.schemas.credential_schema import Credential, CredentialRead, CredentialUpsert
from postflow.security import decrypt_token, encrypt_token

logger = structlog.get_logger(__name__)

REFRESH_BUFFER = timedelta(minutes=5)


def refresh_lock_key(brand_id: str, platform: str) -> str:
    return f"credential:{brand_id}:{platform}"


class CredentialService:
    def __init__(self, repo: CredentialsRepository, adapters: Dict[str, PlatformAdapter], locks: KeyedLock):
        self.repo = repo
        self.adapters = adapters
        self.locks = locks

    # --- store side (fed by the OAuth callbacks) ---
    async def save(self, brand_id: str, platform: str, payload: CredentialUpsert) -> SocialCredential:
        expires_at: Optional[datetime] = None
        if payload.expires_at is not None:
            expires_at = to_naive_utc(payload.expires_at)
        elif payload.expires_in:
            expires_at = utcnow() + timedelta(seconds=payload.expires_in)

        cred = await self.repo.upsert(
            brand_id=brand_id,
            platform=platform,
            access_token_enc=encrypt_token(payload.access_token),
            refresh_token_enc=encrypt_token(payload.refresh_token),
            token_secret_enc=encrypt_token(payload.token_secret),
            account_id=payload.account_id,
            expires_at=expires_at,
        )
        logger.info("credential_saved", brand_id=brand_id, platform=platform, expires_at=str(expires_at))
        return cred

    async def list_connected(self, brand_id: str) -> List[CredentialRead]:
        creds = await self.repo.list_by_brand(brand_id)
        return [
            CredentialRead(
                platform=c.platform,
                account_id=c.account_id,
                expires_at=c.expires_at,
                has_refresh_token=bool(c.refresh_token_enc),
                updated_at=c.updated_at,
            )
            for c in creds
        ]

    async def disconnect(self, brand_id: str, platform: str) -> bool:
        removed = await self.repo.delete(brand_id, platform)
        logger.info("credential_disconnected", brand_id=brand_id, platform=platform, removed=removed)
        return removed

    # --- delivery side ---
    @staticmethod
    def _expiring(cred: SocialCredential, now: Optional[datetime] = None) -> bool:
        if cred.expires_at is None:
            return False
        return to_naive_utc(cred.expires_at) < (now or utcnow()) + REFRESH_BUFFER

    @staticmethod
    def _decrypt(cred: SocialCredential) -> Credential:
        access_token = decrypt_token(cred.access_token_enc)
        if not access_token:
            raise CredentialError(cred.platform, "stored access token could not be decrypted; reconnect the account")
        return Credential(
            brand_id=cred.brand_id,
            platform=cred.platform,
            access_token=access_token,
            refresh_token=decrypt_token(cred.refresh_token_enc),
            token_secret=decrypt_token(cred.token_secret_enc),
            account_id=cred.account_id,
            expires_at=cred.expires_at,
        )

    async def resolve(self, brand_id: str, platform: str) -> Credential:
        """
        Return a usable credential for (brand, platform), refreshing it first
        when it expires within REFRESH_BUFFER and the platform can refresh.
        Refreshes for one key are single-flight: the record is re-read once
        the lock is held and a token refreshed meanwhile is reused.
        """
        cred = await self.repo.get(brand_id, platform)
        if cred is None:
            raise CredentialNotFoundError(platform, f"no {platform} account connected for this brand")
        if not self._expiring(cred):
            return self._decrypt(cred)

        adapter = self.adapters.get(platform)
        if adapter is None or not adapter.supports_refresh or not cred.refresh_token_enc:
            if to_naive_utc(cred.expires_at) <= utcnow():
                raise CredentialError(platform, "access token expired and cannot be refreshed; reconnect the account")
            return self._decrypt(cred)

        async with self.locks.hold(refresh_lock_key(brand_id, platform)):
            cred = await self.repo.reload(cred)
            if not self._expiring(cred):
                logger.info("credential_already_refreshed", brand_id=brand_id, platform=platform)
                return self._decrypt(cred)

            logger.info("credential_refreshing", brand_id=brand_id, platform=platform)
            try:
                grant = await adapter.refresh(self._decrypt(cred))
            except CredentialError:
                logger.exception("credential_refresh_failed", brand_id=brand_id, platform=platform)
                raise
            except Exception as e:
                logger.exception("credential_refresh_failed", brand_id=brand_id, platform=platform)
                raise CredentialError(platform, f"token refresh failed: {e}") from e

            expires_at = utcnow() + timedelta(seconds=grant.expires_in) if grant.expires_in else None
            cred = await self.repo.update_tokens(
                cred,
                access_token_enc=encrypt_token(grant.access_token),
                refresh_token_enc=encrypt_token(grant.refresh_token) if grant.refresh_token else cred.refresh_token_enc,
                expires_at=expires_at,
            )
            logger.info("credential_refreshed", brand_id=brand_id, platform=platform, expires_at=str(expires_at))
            return self._decrypt(cred)
