# postflow/schemas/credential_schema.py
from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class CredentialUpsert(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_secret: Optional[str] = None
    account_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    expires_in: Optional[int] = None  # seconds; alternative to expires_at


class CredentialRead(BaseModel):
    platform: str
    account_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    has_refresh_token: bool
    updated_at: datetime


class Credential(BaseModel):
    """Decrypted credential handed to platform adapters. Never serialised to clients."""
    brand_id: str
    platform: str
    access_token: str
    refresh_token: Optional[str] = None
    token_secret: Optional[str] = None
    account_id: Optional[str] = None
    expires_at: Optional[datetime] = None


class TokenGrant(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
