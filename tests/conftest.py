from collections.abc import Callable, Generator
from uuid import UUID

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from base_authz.core.config import get_settings
from base_authz.models.permission import DataPermissionRule, FieldPermission
from base_authz.models.role import Role
from base_authz.services.policy_store import PolicyStore

TEST_JWT_SECRET = "authz-test-secret-key-at-least-32-bytes"


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("BA_AUTH_JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("BA_AUTH_JWT_ALGORITHMS", "HS256")
    monkeypatch.delenv("BA_AUTH_JWT_ISSUER", raising=False)
    monkeypatch.delenv("BA_AUTH_JWT_AUDIENCE", raising=False)
    monkeypatch.delenv("BA_AUTH_JWKS_URL", raising=False)
    monkeypatch.delenv("BA_BOOTSTRAP_ADMIN_USER_ID", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    sqlite_engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    yield sqlite_engine
    sqlite_engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)


@pytest.fixture
def store(session_factory: sessionmaker[Session]) -> PolicyStore:
    policy_store = PolicyStore(session_factory)
    policy_store.ensure_schema()
    return policy_store


@pytest.fixture
def make_role(session_factory: sessionmaker[Session]) -> Callable[..., UUID]:
    def _make_role(name: str, level: int = 10, *, is_system: bool = False) -> UUID:
        with session_factory() as db:
            role = Role(name=name, level=level, is_system=is_system)
            db.add(role)
            db.commit()
            return role.id

    return _make_role


@pytest.fixture
def add_data_rule(session_factory: sessionmaker[Session]) -> Callable[..., None]:
    def _add(role_id: UUID, resource: str, field: str, operator: str, value_type: str, **kwargs) -> None:
        with session_factory() as db:
            db.add(
                DataPermissionRule(
                    role_id=role_id,
                    resource=resource,
                    field=field,
                    operator=operator,
                    value_type=value_type,
                    fixed_value=kwargs.get("fixed_value"),
                    is_active=kwargs.get("is_active", True),
                )
            )
            db.commit()

    return _add


@pytest.fixture
def add_field_permission(session_factory: sessionmaker[Session]) -> Callable[..., None]:
    def _add(role_id: UUID, resource: str, field: str, *, can_read: bool = True, can_write: bool = True) -> None:
        with session_factory() as db:
            db.add(
                FieldPermission(
                    role_id=role_id,
                    resource=resource,
                    field=field,
                    can_read=can_read,
                    can_write=can_write,
                )
            )
            db.commit()

    return _add
