from datetime import timedelta

import pyotp

from docguard.services.credential_service import LoginStatus
from docguard.services.login_service import LoginFlow
from docguard.services.mfa_service import METHOD_BACKUP_CODE
from docguard.services.session_service import Authenticated, MfaPending
from docguard.tests.factories import NOW, PASSWORD, audit_actions, enable_mfa, make_account, wrong_code


def test_login_without_mfa_issues_session(db, audit, settings, session_factory):
    account = make_account(db)
    flow = LoginFlow(db, audit, settings)

    outcome = flow.login(account.email, PASSWORD, NOW)

    assert outcome.success and not outcome.mfa_required
    assert isinstance(flow.sessions.validate(outcome.carrier, NOW).state, Authenticated)
    assert ("login_success", True) in audit_actions(session_factory, account.id)


def test_login_with_mfa_requires_second_factor(db, audit, settings):
    account = make_account(db)
    secret, _ = enable_mfa(db, audit, settings, account)
    flow = LoginFlow(db, audit, settings)

    outcome = flow.login(account.email, PASSWORD, NOW)
    assert outcome.mfa_required
    assert isinstance(flow.sessions.validate(outcome.carrier, NOW).state, MfaPending)

    later = NOW + timedelta(seconds=40)
    done = flow.complete_mfa(outcome.carrier, pyotp.TOTP(secret).at(later), now=later)
    assert done.success
    state = flow.sessions.validate(done.carrier, later).state
    assert isinstance(state, Authenticated)
    assert state.account_id == account.id


def test_backup_code_completes_login(db, audit, settings):
    account = make_account(db)
    _, backup_codes = enable_mfa(db, audit, settings, account)
    flow = LoginFlow(db, audit, settings)
    pending = flow.login(account.email, PASSWORD, NOW).carrier

    done = flow.complete_mfa(pending, backup_codes[3], method=METHOD_BACKUP_CODE, now=NOW)

    assert done.success
    assert flow.mfa.remaining_backup_codes(account.id) == settings.backup_code_count - 1


def test_failed_mfa_codes_lock_the_account(db, audit, settings, session_factory):
    account = make_account(db)
    secret, _ = enable_mfa(db, audit, settings, account)
    flow = LoginFlow(db, audit, settings)
    pending = flow.login(account.email, PASSWORD, NOW).carrier
    bad = wrong_code(secret)

    statuses = [flow.complete_mfa(pending, bad, now=NOW).status for _ in range(settings.max_failed_attempts)]

    assert statuses == [LoginStatus.INVALID] * (settings.max_failed_attempts - 1) + [LoginStatus.LOCKED]
    # the correct code no longer helps, nor does the password step
    assert flow.complete_mfa(pending, pyotp.TOTP(secret).at(NOW), now=NOW).status == LoginStatus.LOCKED
    assert flow.login(account.email, PASSWORD, NOW).status == LoginStatus.LOCKED
    assert ("account_locked", True) in audit_actions(session_factory, account.id)


def test_expired_challenge_is_rejected(db, audit, settings):
    account = make_account(db)
    secret, _ = enable_mfa(db, audit, settings, account)
    flow = LoginFlow(db, audit, settings)
    pending = flow.login(account.email, PASSWORD, NOW).carrier

    later = NOW + timedelta(minutes=6)
    outcome = flow.complete_mfa(pending, pyotp.TOTP(secret).at(later), now=later)

    assert outcome.status == LoginStatus.INVALID
    assert outcome.carrier is None


def test_authenticated_carrier_cannot_complete_mfa(db, audit, settings):
    account = make_account(db)
    flow = LoginFlow(db, audit, settings)
    session = flow.login(account.email, PASSWORD, NOW).carrier

    assert flow.complete_mfa(session, "123456", now=NOW).status == LoginStatus.INVALID
