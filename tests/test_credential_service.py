"""Tests for credential storage, resolution and refresh."""
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import BRAND
from postflow.clock import utcnow
from postflow.errors import CredentialError, CredentialNotFoundError
from postflow.infrastructure.credentials_repo import CredentialsRepository
from postflow.infrastructure.locks import KeyedLock
from postflow.models.social_credential import SocialCredential
from postflow.schemas.credential_schema import CredentialUpsert, TokenGrant
from postflow.security import decrypt_token, encrypt_token
from postflow.services.credential_service import CredentialService


def refreshing_adapter(grant: TokenGrant, supports_refresh: bool = True) -> MagicMock:
    adapter = MagicMock()
    adapter.supports_refresh = supports_refresh
    adapter.refresh = AsyncMock(return_value=grant)
    return adapter


@pytest.mark.asyncio
async def test_save_encrypts_and_lists_without_secrets(session, locks):
    svc = CredentialService(CredentialsRepository(session), {}, locks)

    cred = await svc.save(BRAND, "linkedin", CredentialUpsert(access_token="secret", account_id="urn:li:person:1", expires_in=3600))

    assert cred.access_token_enc != "secret"
    assert decrypt_token(cred.access_token_enc) == "secret"
    assert cred.expires_at > utcnow()

    listed = await svc.list_connected(BRAND)
    assert [c.platform for c in listed] == ["linkedin"]
    assert listed[0].account_id == "urn:li:person:1"
    assert listed[0].has_refresh_token is False
    assert not hasattr(listed[0], "access_token")


@pytest.mark.asyncio
async def test_save_replaces_existing_record(session, locks):
    svc = CredentialService(CredentialsRepository(session), {}, locks)
    await svc.save(BRAND, "twitter", CredentialUpsert(access_token="one"))
    await svc.save(BRAND, "twitter", CredentialUpsert(access_token="two"))

    resolved = await svc.resolve(BRAND, "twitter")
    assert resolved.access_token == "two"
    assert len(await svc.list_connected(BRAND)) == 1


@pytest.mark.asyncio
async def test_disconnect(session, locks, seed_credential):
    await seed_credential("facebook")
    svc = CredentialService(CredentialsRepository(session), {}, locks)

    assert await svc.disconnect(BRAND, "facebook") is True
    assert await svc.disconnect(BRAND, "facebook") is False
    with pytest.raises(CredentialNotFoundError):
        await svc.resolve(BRAND, "facebook")


@pytest.mark.asyncio
async def test_resolve_missing_credential(session, locks):
    svc = CredentialService(CredentialsRepository(session), {}, locks)
    with pytest.raises(CredentialNotFoundError) as exc_info:
        await svc.resolve(BRAND, "instagram")
    assert exc_info.value.message == "no instagram account connected for this brand"


@pytest.mark.asyncio
async def test_resolve_fresh_token_skips_refresh(session, locks, seed_credential):
    await seed_credential("twitter", access_token="fresh", refresh_token="r", expires_at=utcnow() + timedelta(hours=1))
    adapter = refreshing_adapter(TokenGrant(access_token="unused"))
    svc = CredentialService(CredentialsRepository(session), {"twitter": adapter}, locks)

    resolved = await svc.resolve(BRAND, "twitter")

    assert resolved.access_token == "fresh"
    adapter.refresh.assert_not_called()


@pytest.mark.asyncio
async def test_resolve_refreshes_expiring_token(session, locks, seed_credential):
    await seed_credential("twitter", access_token="old", refresh_token="r1", expires_at=utcnow() + timedelta(minutes=2))
    adapter = refreshing_adapter(TokenGrant(access_token="new", refresh_token="r2", expires_in=7200))
    svc = CredentialService(CredentialsRepository(session), {"twitter": adapter}, locks)

    resolved = await svc.resolve(BRAND, "twitter")

    assert resolved.access_token == "new"
    assert resolved.refresh_token == "r2"
    adapter.refresh.assert_awaited_once()
    assert adapter.refresh.await_args.args[0].refresh_token == "r1"

    stored = await CredentialsRepository(session).get(BRAND, "twitter")
    assert decrypt_token(stored.access_token_enc) == "new"
    assert stored.expires_at > utcnow() + timedelta(hours=1)


@pytest.mark.asyncio
async def test_expired_token_without_refresh_support(session, locks, seed_credential):
    await seed_credential("linkedin", refresh_token="r", expires_at=utcnow() - timedelta(minutes=1))
    adapter = refreshing_adapter(TokenGrant(access_token="x"), supports_refresh=False)
    svc = CredentialService(CredentialsRepository(session), {"linkedin": adapter}, locks)

    with pytest.raises(CredentialError) as exc_info:
        await svc.resolve(BRAND, "linkedin")
    assert "expired" in exc_info.value.message
    adapter.refresh.assert_not_called()


@pytest.mark.asyncio
async def test_expiring_but_valid_token_without_refresh_support(session, locks, seed_credential):
    await seed_credential("linkedin", access_token="still-good", expires_at=utcnow() + timedelta(minutes=2))
    svc = CredentialService(CredentialsRepository(session), {}, locks)

    resolved = await svc.resolve(BRAND, "linkedin")
    assert resolved.access_token == "still-good"


@pytest.mark.asyncio
async def test_refresh_failure_is_a_credential_error(session, locks, seed_credential):
    await seed_credential("twitter", refresh_token="r", expires_at=utcnow())
    adapter = MagicMock(supports_refresh=True)
    adapter.refresh = AsyncMock(side_effect=RuntimeError("boom"))
    svc = CredentialService(CredentialsRepository(session), {"twitter": adapter}, locks)

    with pytest.raises(CredentialError) as exc_info:
        await svc.resolve(BRAND, "twitter")
    assert "boom" in exc_info.value.message


class InMemoryCredentials:
    """Stand-in repository sharing one record between services."""

    def __init__(self, cred: SocialCredential):
        self.cred = cred

    async def get(self, brand_id, platform):
        return self.cred

    async def reload(self, cred):
        return self.cred

    async def update_tokens(self, cred, access_token_enc, refresh_token_enc, expires_at):
        self.cred.access_token_enc = access_token_enc
        self.cred.refresh_token_enc = refresh_token_enc
        self.cred.expires_at = expires_at
        return self.cred


@pytest.mark.asyncio
async def test_concurrent_resolves_refresh_once():
    cred = SocialCredential(
        brand_id=BRAND,
        platform="twitter",
        access_token_enc=encrypt_token("old"),
        refresh_token_enc=encrypt_token("r1"),
        expires_at=utcnow() + timedelta(minutes=1),
    )
    repo = InMemoryCredentials(cred)
    locks = KeyedLock()

    async def slow_refresh(credential):
        await asyncio.sleep(0.05)
        return TokenGrant(access_token="new", expires_in=3600)

    adapter = MagicMock(supports_refresh=True)
    adapter.refresh = AsyncMock(side_effect=slow_refresh)
    services = [CredentialService(repo, {"twitter": adapter}, locks) for _ in range(2)]

    first, second = await asyncio.gather(*(svc.resolve(BRAND, "twitter") for svc in services))

    assert adapter.refresh.await_count == 1
    assert first.access_token == "new"
    assert second.access_token == "new"
