# postflow/infrastructure/credentials_repo.py
from typing import Optional, List
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlmodel import select
from postflow.models.social_credential import SocialCredential
from postflow.clock import utcnow
from datetime import datetime


class CredentialsRepository:
    """
    Repository for SocialCredential entity.
    All methods are async and expect an AsyncSession to be injected from the outside.
    Token columns hold ciphertext; encryption happens in the service layer.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, brand_id: str, platform: str) -> Optional[SocialCredential]:
        q = select(SocialCredential).where(
            SocialCredential.brand_id == brand_id,
            SocialCredential.platform == platform,
        )
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def reload(self, cred: SocialCredential) -> SocialCredential:
        """Re-read a record that another writer may have refreshed."""
        await self.session.refresh(cred)
        return cred

    async def list_by_brand(self, brand_id: str) -> List[SocialCredential]:
        q = select(SocialCredential).where(SocialCredential.brand_id == brand_id).order_by(SocialCredential.platform)
        res = await self.session.execute(q)
        return list(res.scalars().all())

    async def upsert(
        self,
        brand_id: str,
        platform: str,
        access_token_enc: str,
        refresh_token_enc: Optional[str] = None,
        token_secret_enc: Optional[str] = None,
        account_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> SocialCredential:
        """
        At most one credential per (brand, platform): update in place if present.
        """
        cred = await self.get(brand_id, platform)
        if cred is None:
            cred = SocialCredential(brand_id=brand_id, platform=platform, access_token_enc=access_token_enc)
        cred.access_token_enc = access_token_enc
        cred.refresh_token_enc = refresh_token_enc
        cred.token_secret_enc = token_secret_enc
        cred.account_id = account_id
        cred.expires_at = expires_at
        cred.updated_at = utcnow()
        self.session.add(cred)
        await self.session.commit()
        await self.session.refresh(cred)
        return cred

    async def update_tokens(
        self,
        cred: SocialCredential,
        access_token_enc: str,
        refresh_token_enc: Optional[str],
        expires_at: Optional[datetime],
    ) -> SocialCredential:
        cred.access_token_enc = access_token_enc
        cred.refresh_token_enc = refresh_token_enc
        cred.expires_at = expires_at
        cred.updated_at = utcnow()
        self.session.add(cred)
        await self.session.commit()
        await self.session.refresh(cred)
        return cred

    async def delete(self, brand_id: str, platform: str) -> bool:
        cred = await self.get(brand_id, platform)
        if not cred:
            return False
        await self.session.delete(cred)
        await self.session.commit()
        return True
