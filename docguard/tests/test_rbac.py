import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from sqlalchemy import func, select

from docguard.models import DocumentPermission, PermissionLevel
from docguard.services import rbac_service
from docguard.services.rbac_service import DocumentAction, RbacEngine
from docguard.services.results import FailureReason
from docguard.tests.factories import NOW, audit_actions, enable_mfa, make_account, make_document


def seed(db):
    owner = make_account(db, "owner@example.com")
    other = make_account(db, "other@example.com")
    document = make_document(db, owner)
    return owner, other, document


def test_owner_is_always_owner(db, audit, settings):
    owner, other, document = seed(db)
    rbac = RbacEngine(db, audit, settings)

    assert rbac.get_level(owner.id, document.id, NOW) == PermissionLevel.OWNER
    assert rbac.get_level(other.id, document.id, NOW) is None
    for action in DocumentAction:
        assert rbac.can_perform(owner.id, document.id, action, NOW)


def test_missing_document_denies_everything(db, audit, settings):
    owner, _, _ = seed(db)
    rbac = RbacEngine(db, audit, settings)
    assert rbac.get_level(owner.id, "no-such-document", NOW) is None
    assert not rbac.can_perform(owner.id, "no-such-document", DocumentAction.VIEW, NOW)


def test_viewer_grant_allows_reading_only(db, audit, settings, session_factory):
    owner, other, document = seed(db)
    rbac = RbacEngine(db, audit, settings)
    assert rbac.share(document.id, owner.id, other.id, PermissionLevel.VIEWER, now=NOW).success

    assert rbac.can_perform(other.id, document.id, DocumentAction.VIEW, NOW)
    assert rbac.can_perform(other.id, document.id, DocumentAction.DOWNLOAD, NOW)
    assert not rbac.can_perform(other.id, document.id, DocumentAction.EDIT, NOW)
    assert not rbac.can_perform(other.id, document.id, DocumentAction.DELETE, NOW)
    assert not rbac.can_perform(other.id, document.id, DocumentAction.SHARE, NOW)

    denials = [ok for action, ok in audit_actions(session_factory, other.id) if action == "access_denied"]
    assert denials == [False, False, False]


def test_editor_can_edit_but_not_delete(db, audit, settings):
    owner, other, document = seed(db)
    rbac = RbacEngine(db, audit, settings)
    rbac.share(document.id, owner.id, other.id, PermissionLevel.EDITOR, now=NOW)

    assert rbac.can_perform(other.id, document.id, DocumentAction.EDIT, NOW)
    assert not rbac.can_perform(other.id, document.id, DocumentAction.DELETE, NOW)


def test_resharing_replaces_the_single_grant(db, audit, settings):
    owner, other, document = seed(db)
    rbac = RbacEngine(db, audit, settings)

    rbac.share(document.id, owner.id, other.id, PermissionLevel.VIEWER, now=NOW)
    rbac.share(document.id, owner.id, other.id, PermissionLevel.EDITOR, now=NOW + timedelta(minutes=1))

    count = db.scalar(
        select(func.count()).select_from(DocumentPermission).where(DocumentPermission.document_id == document.id)
    )
    assert count == 1
    assert rbac.get_level(other.id, document.id, NOW + timedelta(minutes=2)) == PermissionLevel.EDITOR


def test_expired_grant_is_ignored(db, audit, settings):
    owner, other, document = seed(db)
    rbac = RbacEngine(db, audit, settings)
    rbac.share(document.id, owner.id, other.id, PermissionLevel.VIEWER, expires_at=NOW + timedelta(hours=1), now=NOW)

    assert rbac.get_level(other.id, document.id, NOW + timedelta(minutes=30)) == PermissionLevel.VIEWER
    assert rbac.get_level(other.id, document.id, NOW + timedelta(hours=2)) is None
    assert rbac.list_shared_with(document.id, NOW + timedelta(hours=2)) == []
    assert rbac.list_accessible_by(other.id, NOW + timedelta(hours=2))["shared"] == []


def test_share_validation(db, audit, settings, session_factory):
    owner, other, document = seed(db)
    rbac = RbacEngine(db, audit, settings)

    assert rbac.share(document.id, owner.id, owner.id, PermissionLevel.VIEWER).reason == FailureReason.SELF_SHARE
    assert rbac.share(document.id, owner.id, other.id, PermissionLevel.OWNER).reason == FailureReason.INVALID_LEVEL
    assert rbac.share(document.id, owner.id, "ghost", PermissionLevel.VIEWER).reason == FailureReason.USER_NOT_FOUND

    result = rbac.share(document.id, other.id, owner.id, PermissionLevel.VIEWER)
    assert result.reason == FailureReason.FORBIDDEN
    assert ("access_denied", False) in audit_actions(session_factory, other.id)


def test_revoke_removes_grant_and_reports_missing_one(db, audit, settings, session_factory):
    owner, other, document = seed(db)
    rbac = RbacEngine(db, audit, settings)
    rbac.share(document.id, owner.id, other.id, PermissionLevel.EDITOR, now=NOW)

    revoked = rbac.revoke(document.id, owner.id, other.id, NOW)
    assert revoked.success
    assert revoked.data["previous_level"] == PermissionLevel.EDITOR
    assert rbac.get_level(other.id, document.id, NOW) is None

    missing = rbac.revoke(document.id, owner.id, other.id, NOW)
    assert missing.reason == FailureReason.NOT_FOUND
    assert missing.error == "Permission not found"

    assert [a for a, _ in audit_actions(session_factory, owner.id)].count("revoke") == 1


def test_only_owner_can_revoke(db, audit, settings):
    owner, other, document = seed(db)
    rbac = RbacEngine(db, audit, settings)
    rbac.share(document.id, owner.id, other.id, PermissionLevel.EDITOR, now=NOW)

    assert rbac.revoke(document.id, other.id, other.id, NOW).reason == FailureReason.FORBIDDEN
    assert rbac.get_level(other.id, document.id, NOW) == PermissionLevel.EDITOR


def test_listing_splits_owned_and_shared(db, audit, settings):
    owner, other, document = seed(db)
    own = make_document(db, other, "notes.txt")
    rbac = RbacEngine(db, audit, settings)
    rbac.share(document.id, owner.id, other.id, PermissionLevel.VIEWER, now=NOW)

    listing = rbac.list_accessible_by(other.id, NOW)
    assert [d.id for d in listing["owned"]] == [own.id]
    assert [s.document.id for s in listing["shared"]] == [document.id]
    assert listing["shared"][0].owner_email == "owner@example.com"

    shared_with = rbac.list_shared_with(document.id, NOW)
    assert [(s.user_email, s.permission_level) for s in shared_with] == [
        ("other@example.com", PermissionLevel.VIEWER)
    ]


def test_enforced_mfa_denies_accounts_without_it(db, audit, settings, session_factory):
    owner, other, document = seed(db)
    enforced = settings.model_copy(update={"mfa_enforced": True})
    rbac = RbacEngine(db, audit, enforced)

    assert not rbac.can_perform(owner.id, document.id, DocumentAction.VIEW, NOW)
    assert audit_actions(session_factory, owner.id) == [("access_denied", False)]

    enable_mfa(db, audit, settings, owner)
    assert rbac.can_perform(owner.id, document.id, DocumentAction.VIEW, NOW)


def test_parallel_reshare_leaves_one_grant(db, audit, settings, session_factory):
    owner, other, document = seed(db)
    levels = [PermissionLevel.VIEWER, PermissionLevel.EDITOR] * 3
    start = threading.Barrier(len(levels))

    def reshare(level):
        with session_factory() as own_db:
            rbac = RbacEngine(own_db, audit, settings)
            start.wait()
            return rbac.share(document.id, owner.id, other.id, level, now=NOW)

    with ThreadPoolExecutor(max_workers=len(levels)) as pool:
        results = list(pool.map(reshare, levels))

    assert all(r.success for r in results)
    count = db.scalar(
        select(func.count()).select_from(DocumentPermission).where(
            DocumentPermission.document_id == document.id,
            DocumentPermission.user_id == other.id,
        )
    )
    assert count == 1


def test_share_without_conflict_resolving_insert_is_unavailable(db, audit, settings, monkeypatch):
    owner, other, document = seed(db)
    monkeypatch.setattr(rbac_service, "_UPSERT_DIALECTS", {})

    result = RbacEngine(db, audit, settings).share(document.id, owner.id, other.id, PermissionLevel.VIEWER, now=NOW)

    assert result.reason == FailureReason.UNAVAILABLE
    assert RbacEngine(db, audit, settings).get_level(other.id, document.id, NOW) is None
