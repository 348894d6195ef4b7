# postflow/models/social_credential.py
from sqlmodel import SQLModel, Field, Column
from typing import Optional
from datetime import datetime
import uuid
from sqlalchemy import String, UniqueConstraint

from postflow.clock import utcnow


class SocialCredential(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("brand_id", "platform", name="uq_credential_brand_platform"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    brand_id: str = Field(sa_column=Column(String, index=True, nullable=False))
    platform: str = Field(sa_column=Column(String, index=True, nullable=False))
    account_id: Optional[str] = Field(sa_column=Column(String), default=None)  # person urn / ig business id / page id
    access_token_enc: str
    refresh_token_enc: Optional[str] = None
    token_secret_enc: Optional[str] = None
    expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
