from datetime import timedelta

import pytest

from amc_portal.core.exceptions import (
    AccountDisabledError,
    AuthenticationError,
    ConflictError,
    ExpiredTokenError,
    MalformedTokenError,
    RevokedTokenError,
    UserNotFoundError,
    WrongTokenTypeError,
)
from amc_portal.core.security import REFRESH_TOKEN
from amc_portal.models.token_blacklist import TokenBlacklist
from amc_portal.models.user_session import UserSession
from amc_portal.schemas.user import UserCreate
from amc_portal.services.session_manager import ClientInfo, SessionManager, token_fingerprint


def _register(manager: SessionManager, username: str = "alice", password: str = "Passw0rd!", **fields):
    return manager.register(UserCreate(username=username, password=password, **fields))


def test_register_then_login_then_verify(manager: SessionManager):
    registered = _register(manager, email="alice@example.com")
    assert registered.user_view().username == "alice"
    assert "password_hash" not in registered.user_view().model_dump()

    result = manager.login("alice", "Passw0rd!")
    claims = manager.verify_access(result.tokens.access_token)

    assert claims["id"] == registered.user.id
    assert claims["username"] == "alice"
    assert claims["role"] == "user"


def test_login_accepts_email_as_identifier(manager: SessionManager):
    _register(manager, email="alice@example.com")

    result = manager.login("alice@example.com", "Passw0rd!")

    assert result.user.username == "alice"


def test_register_rejects_duplicate_username(manager: SessionManager):
    _register(manager)

    with pytest.raises(ConflictError) as exc_info:
        _register(manager, password="Other0ne!")

    assert exc_info.value.status_code == 409


def test_register_rejects_duplicate_email(manager: SessionManager):
    _register(manager, email="shared@example.com")

    with pytest.raises(ConflictError):
        _register(manager, username="bob", email="shared@example.com")


def test_register_records_session_audit(manager: SessionManager, db_session):
    result = manager.register(
        UserCreate(username="alice", password="Passw0rd!"),
        ClientInfo(ip_address="10.0.0.5", user_agent="pytest"),
    )

    session_row = db_session.query(UserSession).one()
    assert session_row.user_id == result.user.id
    assert session_row.token_hash == token_fingerprint(result.tokens.access_token)
    assert session_row.ip_address == "10.0.0.5"
    assert session_row.is_active is True


def test_register_succeeds_when_session_audit_fails(manager: SessionManager, store, monkeypatch):
    def broken_audit(*args, **kwargs):
        raise RuntimeError("audit table unavailable")

    monkeypatch.setattr(store, "insert_session_audit", broken_audit)

    result = _register(manager)

    assert manager.verify_access(result.tokens.access_token)["id"] == result.user.id


def test_wrong_password_and_unknown_user_fail_identically(manager: SessionManager):
    _register(manager)

    with pytest.raises(AuthenticationError) as wrong_password:
        manager.login("alice", "WrongPass1!")
    with pytest.raises(AuthenticationError) as unknown_user:
        manager.login("nobody", "Passw0rd!")

    assert wrong_password.value.message == unknown_user.value.message
    assert wrong_password.value.status_code == unknown_user.value.status_code == 401
    assert wrong_password.value.reason != unknown_user.value.reason


def test_login_to_disabled_account_is_reported_distinctly(manager: SessionManager, store):
    registered = _register(manager)
    store.set_user_active(registered.user.id, False)

    with pytest.raises(AccountDisabledError):
        manager.login("alice", "Passw0rd!")


def test_disabled_account_with_wrong_password_is_authentication_error(manager: SessionManager, store):
    registered = _register(manager)
    store.set_user_active(registered.user.id, False)

    with pytest.raises(AuthenticationError):
        manager.login("alice", "WrongPass1!")


def test_logout_revokes_both_tokens(manager: SessionManager):
    _register(manager)
    tokens = manager.login("alice", "Passw0rd!").tokens

    manager.logout(tokens.access_token, tokens.refresh_token)

    with pytest.raises(RevokedTokenError):
        manager.verify_access(tokens.access_token)
    with pytest.raises(RevokedTokenError) as exc_info:
        manager.refresh(tokens.refresh_token)
    assert exc_info.value.message == "Refresh token has been revoked"


def test_logout_marks_session_inactive(manager: SessionManager, db_session):
    _register(manager)
    tokens = manager.login("alice", "Passw0rd!").tokens

    manager.logout(tokens.access_token)

    session_row = (
        db_session.query(UserSession)
        .filter(UserSession.token_hash == token_fingerprint(tokens.access_token))
        .one()
    )
    assert session_row.is_active is False


def test_logout_with_nothing_or_garbage_never_raises(manager: SessionManager):
    manager.logout()
    manager.logout("not-a-token", None)
    manager.logout(None, "")


def test_logout_survives_blacklist_write_failure(manager: SessionManager, store, monkeypatch):
    _register(manager)
    tokens = manager.login("alice", "Passw0rd!").tokens

    def broken_insert(*args, **kwargs):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(store, "insert_blacklist_entry", broken_insert)

    manager.logout(tokens.access_token, tokens.refresh_token)


def test_revoke_is_idempotent(manager: SessionManager, db_session):
    _register(manager)
    tokens = manager.login("alice", "Passw0rd!").tokens

    assert manager.revoke(tokens.access_token) is True
    assert manager.revoke(tokens.access_token) is False
    assert db_session.query(TokenBlacklist).count() == 1

    for _ in range(2):
        with pytest.raises(RevokedTokenError):
            manager.verify_access(tokens.access_token)


def test_revoke_skips_undecodable_token(manager: SessionManager, db_session):
    assert manager.revoke("garbage") is False
    assert db_session.query(TokenBlacklist).count() == 0


def test_disabled_user_is_rejected_with_still_valid_token(manager: SessionManager, store):
    registered = _register(manager)
    tokens = manager.login("alice", "Passw0rd!").tokens

    store.set_user_active(registered.user.id, False)

    with pytest.raises(AccountDisabledError):
        manager.verify_access(tokens.access_token)


def test_deleted_user_is_rejected(manager: SessionManager, db_session):
    registered = _register(manager)
    tokens = registered.tokens

    db_session.query(UserSession).delete()
    db_session.delete(registered.user)
    db_session.commit()

    with pytest.raises(UserNotFoundError):
        manager.verify_access(tokens.access_token)
    with pytest.raises(UserNotFoundError):
        manager.refresh(tokens.refresh_token)


def test_refresh_issues_new_pair_with_later_iat(manager: SessionManager, codec, clock):
    _register(manager)
    original = manager.login("alice", "Passw0rd!").tokens

    clock.advance(5)
    refreshed = manager.refresh(original.refresh_token)

    original_iat = codec.decode_unsafe(original.access_token)["payload"]["iat"]
    refreshed_iat = codec.decode_unsafe(refreshed.access_token)["payload"]["iat"]
    assert refreshed_iat > original_iat
    assert refreshed.access_token != original.access_token
    assert manager.verify_access(refreshed.access_token)["username"] == "alice"


def test_refresh_token_can_be_reused(manager: SessionManager, clock):
    _register(manager)
    original = manager.login("alice", "Passw0rd!").tokens

    first = manager.refresh(original.refresh_token)
    clock.advance(1)
    second = manager.refresh(original.refresh_token)

    assert first.access_token != second.access_token


def test_refresh_rejects_access_token(manager: SessionManager):
    tokens = _register(manager).tokens

    with pytest.raises(WrongTokenTypeError):
        manager.refresh(tokens.access_token)


def test_verify_access_rejects_refresh_token(manager: SessionManager):
    tokens = _register(manager).tokens

    with pytest.raises(WrongTokenTypeError):
        manager.verify_access(tokens.refresh_token)


def test_refresh_rejects_disabled_user(manager: SessionManager, store):
    registered = _register(manager)
    store.set_user_active(registered.user.id, False)

    with pytest.raises(AccountDisabledError) as exc_info:
        manager.refresh(registered.tokens.refresh_token)

    assert exc_info.value.message == "User account is disabled"


def test_expiry_boundary(manager: SessionManager, codec):
    user = _register(manager).user

    expired = codec.mint_access_token(user, expires_delta=timedelta(seconds=-1))
    fresh = codec.mint_access_token(user, expires_delta=timedelta(seconds=3600))

    with pytest.raises(ExpiredTokenError):
        manager.verify_access(expired)
    assert manager.verify_access(fresh)["id"] == user.id


def test_expired_refresh_token(manager: SessionManager, codec):
    user = _register(manager).user
    expired = codec.mint_refresh_token(user, expires_delta=timedelta(seconds=-1))

    with pytest.raises(ExpiredTokenError):
        manager.refresh(expired)


def test_malformed_token_is_not_treated_as_revoked(manager: SessionManager):
    with pytest.raises(MalformedTokenError):
        manager.verify_access("not-a-jwt")


def test_decode_unsafe_reads_minted_id(manager: SessionManager, codec):
    user = _register(manager).user

    decoded = codec.decode_unsafe(codec.mint_access_token(user))

    assert decoded["payload"]["id"] == user.id


def test_minted_refresh_token_verifies_as_refresh(manager: SessionManager, codec):
    tokens = _register(manager).tokens

    assert codec.verify(tokens.refresh_token, REFRESH_TOKEN)["username"] == "alice"
