import pytest

from docguard.core.config import Settings
from docguard.db.base import Base
from docguard.db.session import build_engine, build_session_factory
from docguard.services.audit_service import AuditSink, RequestContext


@pytest.fixture()
def settings():
    return Settings(
        _env_file=None,
        session_secret="test-secret",
        encryption_master_key="test-master-key",
        session_cookie_secure=False,
    )


@pytest.fixture()
def engine(tmp_path):
    # file database: the audit sink writes through its own connections
    engine = build_engine(f"sqlite:///{tmp_path / 'docguard-test.db'}")
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def audit(session_factory):
    return AuditSink(session_factory, RequestContext(ip_address="127.0.0.1", user_agent="pytest"))
