"""Tests for SessionAuthenticator: valid access, renewal with single-use refresh, failures."""

from unittest.mock import AsyncMock, patch

import pytest

from batchkeeper.core.auth import create_access_token, decode_token
from batchkeeper.repositories.credential_store import CredentialStore
from batchkeeper.services.errors import SessionInvalid, SessionMissing


@pytest.fixture
def authenticator(app):
    return app.state.authenticator


@pytest.mark.asyncio
async def test_valid_access_token_resolves_user(authenticator, session_maker, settings, create_user):
    user = await create_user(name="Valid")
    access = create_access_token(settings, user.id, user.name)
    async with session_maker() as session:
        result = await authenticator.authenticate(session, access, user.refresh_token)
    assert result.user.id == user.id
    assert result.rotated is None


@pytest.mark.asyncio
async def test_missing_tokens_raise_session_missing(authenticator, session_maker):
    async with session_maker() as session:
        with pytest.raises(SessionMissing):
            await authenticator.authenticate(session, None, "r")
        with pytest.raises(SessionMissing):
            await authenticator.authenticate(session, "a", "")


@pytest.mark.asyncio
async def test_garbage_access_token_is_invalid(authenticator, session_maker, create_user):
    user = await create_user()
    async with session_maker() as session:
        with pytest.raises(SessionInvalid):
            await authenticator.authenticate(session, "not-a-jwt", user.refresh_token)


@pytest.mark.asyncio
async def test_unknown_user_is_invalid(authenticator, session_maker, settings):
    access = create_access_token(settings, 999, "ghost")
    async with session_maker() as session:
        with pytest.raises(SessionInvalid):
            await authenticator.authenticate(session, access, "whatever")


@pytest.mark.asyncio
async def test_expired_access_rotates_refresh_token(authenticator, session_maker, settings, create_user):
    user = await create_user()
    old_refresh = user.refresh_token
    expired = create_access_token(settings, user.id, user.name, expires_in=-30)

    async with session_maker() as session:
        result = await authenticator.authenticate(session, expired, old_refresh)

    assert result.user.id == user.id
    assert result.rotated is not None
    assert result.rotated.refresh_token != old_refresh
    assert len(result.rotated.refresh_token) == 64
    assert decode_token(settings, result.rotated.access_token)["sub"] == str(user.id)
    async with session_maker() as session:
        stored = await CredentialStore(session).get_user(user.id)
    assert stored.refresh_token == result.rotated.refresh_token


@pytest.mark.asyncio
async def test_old_refresh_token_is_single_use(authenticator, session_maker, settings, create_user):
    user = await create_user()
    expired = create_access_token(settings, user.id, user.name, expires_in=-30)
    async with session_maker() as session:
        await authenticator.authenticate(session, expired, user.refresh_token)
    async with session_maker() as session:
        with pytest.raises(SessionInvalid):
            await authenticator.authenticate(session, expired, user.refresh_token)


@pytest.mark.asyncio
async def test_refresh_mismatch_is_invalid_and_keeps_stored_token(authenticator, session_maker, settings, create_user):
    user = await create_user()
    expired = create_access_token(settings, user.id, user.name, expires_in=-30)
    async with session_maker() as session:
        with pytest.raises(SessionInvalid):
            await authenticator.authenticate(session, expired, "f" * 64)
    async with session_maker() as session:
        stored = await CredentialStore(session).get_user(user.id)
    assert stored.refresh_token == user.refresh_token


@pytest.mark.asyncio
async def test_tampered_expired_token_is_invalid(authenticator, session_maker, settings, create_user):
    user = await create_user()
    other = settings.model_copy(update={"secret_key": "attacker"})
    forged = create_access_token(other, user.id, user.name, expires_in=-30)
    async with session_maker() as session:
        with pytest.raises(SessionInvalid):
            await authenticator.authenticate(session, forged, user.refresh_token)


@pytest.mark.asyncio
async def test_lost_rotation_race_is_invalid(authenticator, session_maker, settings, create_user):
    """The conditional swap matched no row: another request already rotated the token."""
    user = await create_user()
    expired = create_access_token(settings, user.id, user.name, expires_in=-30)
    with patch.object(CredentialStore, "rotate_app_refresh_token", new_callable=AsyncMock, return_value=False):
        async with session_maker() as session:
            with pytest.raises(SessionInvalid):
                await authenticator.authenticate(session, expired, user.refresh_token)


@pytest.mark.asyncio
async def test_conditional_rotation_only_matches_presented_token(session_maker, create_user):
    user = await create_user()
    async with session_maker() as session:
        store = CredentialStore(session)
        assert await store.rotate_app_refresh_token(user.id, user.refresh_token, "a" * 64) is True
        assert await store.rotate_app_refresh_token(user.id, user.refresh_token, "b" * 64) is False
        await session.commit()
    async with session_maker() as session:
        stored = await CredentialStore(session).get_user(user.id)
    assert stored.refresh_token == "a" * 64
