import pytest

from bms.models import AccountStatus, DeviceType, RefreshToken
from bms.services.account_guard import AccountGuard, LockoutPolicy
from bms.services.auth import TokenKind, hash_token
from bms.services.errors import AccountLocked, AccountNotActive, InvalidCredentials, InvalidToken
from bms.services.sessions import DeviceInfo, SessionManager

PASSWORD = "Secret123!"

PHONE = DeviceInfo(device_id="phone-1", device_type=DeviceType.IOS, ip_address="10.0.0.1", user_agent="ios-app")
LAPTOP = DeviceInfo(device_id="laptop-1", device_type=DeviceType.WEB)


def _rows(db, user):
    return db.query(RefreshToken).filter(RefreshToken.user_id == user.id).all()


def test_login_by_email_or_phone(sessions, codec, make_user):
    user = make_user(email="ana@example.com", phone="5551112222")
    for identifier in ("ana@example.com", "ANA@example.com", "5551112222"):
        pair = sessions.login(identifier, PASSWORD, PHONE)
        claims = codec.parse(pair.access_token)
        assert claims.subject == str(user.id)
        assert claims.kind == TokenKind.ACCESS
        assert pair.expires_in == 900


def test_unknown_user_and_wrong_password_look_the_same(sessions, make_user):
    user = make_user(email="ana@example.com")
    with pytest.raises(InvalidCredentials) as unknown:
        sessions.login("nobody@example.com", PASSWORD)
    with pytest.raises(InvalidCredentials) as wrong:
        sessions.login("ana@example.com", "wrong-password")
    assert str(unknown.value) == str(wrong.value) == "Invalid credentials"
    assert user.failed_login_attempts == 1


def test_lockout_blocks_correct_password_until_window_ends(sessions, make_user, clock):
    make_user(email="ana@example.com")
    for _ in range(5):
        with pytest.raises(InvalidCredentials):
            sessions.login("ana@example.com", "wrong-password")

    with pytest.raises(AccountLocked):
        sessions.login("ana@example.com", PASSWORD)
    clock.advance(minutes=29)
    with pytest.raises(AccountLocked):
        sessions.login("ana@example.com", PASSWORD)

    clock.advance(minutes=1)
    pair = sessions.login("ana@example.com", PASSWORD)
    assert pair.user.failed_login_attempts == 0
    assert pair.user.account_locked_until is None


def test_lockout_threshold_is_injected(db, codec, clock, make_user):
    guard = AccountGuard(db, LockoutPolicy(max_failed_attempts=2), clock=clock)
    manager = SessionManager(db, codec, guard, clock=clock)
    make_user(email="ana@example.com")
    for _ in range(2):
        with pytest.raises(InvalidCredentials):
            manager.login("ana@example.com", "nope")
    with pytest.raises(AccountLocked):
        manager.login("ana@example.com", PASSWORD)


@pytest.mark.parametrize("status", [AccountStatus.PENDING, AccountStatus.SUSPENDED, AccountStatus.DEACTIVATED])
def test_inactive_accounts_cannot_login(sessions, make_user, status):
    make_user(email="ana@example.com", status=status)
    with pytest.raises(AccountNotActive) as exc:
        sessions.login("ana@example.com", PASSWORD)
    assert exc.value.status == status


def test_relogin_on_same_device_keeps_one_row(sessions, db, make_user):
    user = make_user(email="ana@example.com")
    for _ in range(3):
        last = sessions.login("ana@example.com", PASSWORD, PHONE)
    rows = _rows(db, user)
    assert len(rows) == 1
    assert rows[0].token_hash == hash_token(last.refresh_token)
    assert rows[0].device_type == DeviceType.IOS
    assert rows[0].ip_address == "10.0.0.1"

    sessions.login("ana@example.com", PASSWORD, LAPTOP)
    assert len(_rows(db, user)) == 2


def test_missing_device_binds_to_default(sessions, db, make_user):
    user = make_user(email="ana@example.com")
    sessions.login("ana@example.com", PASSWORD)
    (row,) = _rows(db, user)
    assert row.device_id == "default"
    assert row.device_type == DeviceType.ANDROID


def test_refresh_issues_access_and_keeps_refresh_token(sessions, codec, make_user):
    make_user(email="ana@example.com")
    pair = sessions.login("ana@example.com", PASSWORD, PHONE)
    refreshed = sessions.refresh(pair.refresh_token)
    assert refreshed.refresh_token == pair.refresh_token
    assert refreshed.access_token != pair.access_token
    assert codec.is_access_token(refreshed.access_token)


def test_refresh_rejects_access_token(sessions, make_user):
    make_user(email="ana@example.com")
    pair = sessions.login("ana@example.com", PASSWORD, PHONE)
    with pytest.raises(InvalidToken) as exc:
        sessions.refresh(pair.access_token)
    assert str(exc.value) == "Invalid refresh token"


def test_refresh_rejects_expired_token(sessions, make_user, clock):
    make_user(email="ana@example.com")
    pair = sessions.login("ana@example.com", PASSWORD, PHONE)
    clock.advance(days=31)
    with pytest.raises(InvalidToken):
        sessions.refresh(pair.refresh_token)


def test_refresh_rejects_superseded_token(sessions, make_user):
    make_user(email="ana@example.com")
    old = sessions.login("ana@example.com", PASSWORD, PHONE)
    sessions.login("ana@example.com", PASSWORD, PHONE)
    with pytest.raises(InvalidToken):
        sessions.refresh(old.refresh_token)


def test_refresh_rechecks_account_status(sessions, guard, make_user):
    user = make_user(email="ana@example.com")
    pair = sessions.login("ana@example.com", PASSWORD, PHONE)
    guard.suspend(user)
    with pytest.raises(AccountNotActive):
        sessions.refresh(pair.refresh_token)


def test_rotation_replaces_refresh_token(db, codec, guard, clock, make_user):
    manager = SessionManager(db, codec, guard, rotate_refresh_tokens=True, clock=clock)
    user = make_user(email="ana@example.com")
    pair = manager.login("ana@example.com", PASSWORD, PHONE)
    rotated = manager.refresh(pair.refresh_token)
    assert rotated.refresh_token != pair.refresh_token
    assert len(_rows(db, user)) == 1
    with pytest.raises(InvalidToken):
        manager.refresh(pair.refresh_token)
    manager.refresh(rotated.refresh_token)


def test_logout_revokes_only_that_device(sessions, db, make_user):
    user = make_user(email="ana@example.com")
    phone = sessions.login("ana@example.com", PASSWORD, PHONE)
    laptop = sessions.login("ana@example.com", PASSWORD, LAPTOP)

    sessions.logout(phone.refresh_token)
    with pytest.raises(InvalidToken):
        sessions.refresh(phone.refresh_token)
    sessions.refresh(laptop.refresh_token)
    revoked = {r.device_id: r.revoked for r in _rows(db, user)}
    assert revoked == {"phone-1": True, "laptop-1": False}


def test_logout_is_idempotent(sessions, make_user):
    make_user(email="ana@example.com")
    pair = sessions.login("ana@example.com", PASSWORD, PHONE)
    sessions.logout(pair.refresh_token)
    sessions.logout(pair.refresh_token)
    sessions.logout("not-a-token")
    sessions.logout(pair.access_token)


def test_logout_all_devices(sessions, db, make_user):
    user = make_user(email="ana@example.com")
    phone = sessions.login("ana@example.com", PASSWORD, PHONE)
    laptop = sessions.login("ana@example.com", PASSWORD, LAPTOP)

    assert sessions.logout_all_devices(phone.refresh_token) == 2
    assert all(r.revoked for r in _rows(db, user))
    for token in (phone.refresh_token, laptop.refresh_token):
        with pytest.raises(InvalidToken):
            sessions.refresh(token)
    assert sessions.logout_all_devices(phone.refresh_token) == 0
    assert sessions.logout_all_devices("garbage") == 0


def test_login_after_logout_restores_device(sessions, make_user):
    make_user(email="ana@example.com")
    first = sessions.login("ana@example.com", PASSWORD, PHONE)
    sessions.logout(first.refresh_token)
    second = sessions.login("ana@example.com", PASSWORD, PHONE)
    assert sessions.refresh(second.refresh_token).refresh_token == second.refresh_token
