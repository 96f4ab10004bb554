from datetime import timedelta

from docguard.services.session_service import (
    Anonymous,
    Authenticated,
    ExpiryReason,
    MfaPending,
    SessionManager,
)
from docguard.tests.factories import NOW, audit_actions, make_account


def test_fresh_session_is_authenticated(db, audit, settings):
    account = make_account(db)
    sessions = SessionManager(audit, settings)

    check = sessions.validate(sessions.issue(account, NOW), NOW + timedelta(minutes=29))

    assert check.valid
    assert isinstance(check.state, Authenticated)
    assert check.state.account_id == account.id
    assert check.state.created_at == NOW


def test_inactivity_alone_expires_the_session(db, audit, settings, session_factory):
    account = make_account(db)
    sessions = SessionManager(audit, settings)

    check = sessions.validate(sessions.issue(account, NOW), NOW + timedelta(minutes=31))

    assert not check.valid
    assert isinstance(check.state, Anonymous)
    assert check.expired == ExpiryReason.INACTIVITY
    assert ("session_expired", True) in audit_actions(session_factory, account.id)


def test_max_duration_alone_expires_an_active_session(db, audit, settings):
    account = make_account(db)
    sessions = SessionManager(audit, settings)
    token = sessions.issue(account, NOW)

    # active every 20 minutes until 11h40m in
    for step in range(1, 36):
        moment = NOW + timedelta(minutes=20 * step)
        check = sessions.validate(token, moment)
        assert check.valid
        token = sessions.touch(check.state, moment)

    check = sessions.validate(token, NOW + timedelta(hours=12, minutes=1))
    assert check.expired == ExpiryReason.MAX_DURATION


def test_touch_moves_activity_but_not_creation(db, audit, settings):
    account = make_account(db)
    sessions = SessionManager(audit, settings)
    state = sessions.decode(sessions.issue(account, NOW))

    touched = sessions.decode(sessions.touch(state, NOW + timedelta(minutes=10)))

    assert touched.created_at == NOW
    assert touched.last_activity == NOW + timedelta(minutes=10)


def test_extend_refreshes_activity(db, audit, settings):
    account = make_account(db)
    sessions = SessionManager(audit, settings)

    check, token = sessions.extend(sessions.issue(account, NOW), NOW + timedelta(minutes=25))
    assert check.valid and token

    assert sessions.validate(token, NOW + timedelta(minutes=50)).valid


def test_extend_does_not_revive_an_expired_session(db, audit, settings):
    account = make_account(db)
    sessions = SessionManager(audit, settings)

    check, token = sessions.extend(sessions.issue(account, NOW), NOW + timedelta(hours=1))

    assert token is None
    assert check.expired == ExpiryReason.INACTIVITY


def test_pending_challenge_is_not_authenticated_and_expires(db, audit, settings):
    account = make_account(db)
    sessions = SessionManager(audit, settings)
    pending = sessions.issue_pending(account, NOW)

    check = sessions.validate(pending, NOW + timedelta(minutes=4))
    assert isinstance(check.state, MfaPending)
    assert not isinstance(check.state, Authenticated)

    expired = sessions.validate(pending, NOW + timedelta(minutes=6))
    assert expired.expired == ExpiryReason.CHALLENGE_EXPIRED
    assert isinstance(expired.state, Anonymous)


def test_foreign_or_missing_carrier_is_anonymous(db, audit, settings):
    account = make_account(db)
    sessions = SessionManager(audit, settings)
    forged = SessionManager(audit, settings.model_copy(update={"session_secret": "someone-else"})).issue(account, NOW)

    assert sessions.validate(forged, NOW).expired == ExpiryReason.INVALID
    assert isinstance(sessions.validate(None, NOW).state, Anonymous)
    assert isinstance(sessions.decode("not-a-token"), Anonymous)


def test_destroy_records_logout(db, audit, settings, session_factory):
    account = make_account(db)
    sessions = SessionManager(audit, settings)

    sessions.destroy(sessions.issue(account, NOW))
    sessions.destroy(None)

    assert ("logout", True) in audit_actions(session_factory, account.id)
    assert ("logout", True) in audit_actions(session_factory, "unknown")


def test_inactivity_boundary_keeps_sub_second_precision(db, audit, settings):
    account = make_account(db)
    sessions = SessionManager(audit, settings)
    issued = NOW + timedelta(milliseconds=500)
    token = sessions.issue(account, issued)

    assert sessions.decode(token).last_activity == issued
    assert sessions.validate(token, issued + sessions.inactivity_timeout).valid

    late = sessions.validate(token, issued + sessions.inactivity_timeout + timedelta(microseconds=1))
    assert late.expired == ExpiryReason.INACTIVITY


def test_max_duration_boundary_keeps_sub_second_precision(db, audit, settings):
    account = make_account(db)
    sessions = SessionManager(audit, settings)
    issued = NOW + timedelta(milliseconds=500)
    deadline = issued + sessions.max_duration
    state = sessions.decode(sessions.issue(account, issued))

    token = sessions.touch(state, deadline - timedelta(minutes=1))
    assert sessions.decode(token).created_at == issued
    assert sessions.validate(token, deadline).valid

    late = sessions.validate(token, deadline + timedelta(microseconds=1))
    assert late.expired == ExpiryReason.MAX_DURATION
