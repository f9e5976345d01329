from collections.abc import Generator

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker

from base_authz.core.config import get_settings
from base_authz.db.session import get_db
from base_authz.errors import StorageUnavailable
from base_authz.main import create_app
from base_authz.models.audit import AuditLog
from base_authz.models.enums import PolicyType
from base_authz.services.policy_store import PolicyStore

ADMIN_USER = "admin-1"


def _headers(user_id: str = ADMIN_USER, base_id: str | None = None, **claims) -> dict[str, str]:
    token = jwt.encode({"sub": user_id, **claims}, get_settings().auth_jwt_secret, algorithm="HS256")
    headers = {"Authorization": f"Bearer {token}"}
    if base_id is not None:
        headers["X-Base-Id"] = base_id
    return headers


@pytest.fixture
def client(store: PolicyStore, session_factory, monkeypatch: pytest.MonkeyPatch) -> Generator[TestClient, None, None]:
    monkeypatch.setenv("BA_BOOTSTRAP_ADMIN_USER_ID", ADMIN_USER)
    monkeypatch.setenv("BA_POLICY_RELOAD_INTERVAL_SECONDS", "0")
    get_settings.cache_clear()

    app = create_app(policy_store=store)

    def _override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as test_client:
        yield test_client


def _create_role(client: TestClient, name: str, level: int = 10) -> str:
    resp = client.post("/api/roles", json={"name": name, "level": level}, headers=_headers())
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]["id"]


def test_health_probes(client: TestClient):
    live = client.get("/api/health/live")
    assert live.status_code == 200
    assert live.json()["data"]["status"] == "ok"
    assert live.headers["X-Request-Id"]

    ready = client.get("/api/health/ready", headers={"X-Request-Id": "req-1"})
    assert ready.status_code == 200
    body = ready.json()
    assert body["request_id"] == "req-1"
    assert body["data"]["status"] == "ready"
    assert body["data"]["details"]["policies"] == 2


def test_admin_routes_require_authentication(client: TestClient):
    resp = client.get("/api/roles")
    assert resp.status_code == 401
    error = resp.json()["error"]
    assert error["code"] == "AUTHENTICATION_REQUIRED"
    assert error["details"]["status_code"] == 401

    placeholder = client.get("/api/roles", headers={"Authorization": "Bearer {{token}}"})
    assert placeholder.status_code == 401
    assert placeholder.json()["error"]["details"]["reason"] == "authorization_placeholder_not_resolved"


def test_admin_routes_reject_users_without_permission(client: TestClient):
    resp = client.get("/api/roles", headers=_headers("stranger"))
    assert resp.status_code == 403
    error = resp.json()["error"]
    assert error["code"] == "PERMISSION_DENIED"
    assert error["details"]["resource"] == "permission"
    assert error["details"]["action"] == "read"
    assert error["details"]["domain"] == "*"


def test_role_policy_binding_flow(client: TestClient, session_factory):
    role_id = _create_role(client, "WAREHOUSE_KEEPER")

    conflict = client.post("/api/roles", json={"name": "WAREHOUSE_KEEPER"}, headers=_headers())
    assert conflict.status_code == 409
    assert conflict.json()["error"]["code"] == "ROLE_NAME_CONFLICT"

    policy = {"role": "WAREHOUSE_KEEPER", "domain": "42", "resource": "inventory", "action": "read"}
    assert client.post("/api/policies", json=policy, headers=_headers()).json()["data"]["affected"] == 1
    assert client.post("/api/policies", json=policy, headers=_headers()).json()["data"]["affected"] == 0

    missing_role = client.post("/api/policies", json={**policy, "role": "NOPE"}, headers=_headers())
    assert missing_role.status_code == 404
    assert missing_role.json()["error"]["code"] == "ROLE_NOT_FOUND"

    binding = {"user_id": "user-1", "role": "WAREHOUSE_KEEPER", "domain": "42"}
    assert client.post("/api/bindings", json=binding, headers=_headers()).json()["data"]["affected"] == 1

    me = client.get("/api/permissions/me", headers=_headers("user-1", base_id="42"))
    assert me.status_code == 200
    data = me.json()["data"]
    assert data["domain"] == "42"
    assert data["roles"] == ["WAREHOUSE_KEEPER"]
    assert data["policies"] == [{"resource": "inventory", "action": "read", "domain": "42"}]

    other_base = client.get("/api/permissions/me", headers=_headers("user-1", base_id="7")).json()["data"]
    assert other_base["roles"] == []
    assert other_base["policies"] == []
    assert other_base["domains"] == ["42"]

    roles = client.get("/api/roles", headers=_headers()).json()["data"]
    assert [role["name"] for role in roles] == ["SUPER_ADMIN", "ADMIN", "WAREHOUSE_KEEPER"]
    assert roles[-1]["id"] == role_id

    bindings = client.get("/api/bindings", params={"user_id": "user-1"}, headers=_headers()).json()["data"]
    assert len(bindings) == 1
    assert bindings[0]["assigned_by"] == ADMIN_USER

    with session_factory() as db:
        actions = set(db.execute(select(AuditLog.action)).scalars())
    assert {"role.create", "policy.add", "binding.add"} <= actions


def test_policy_delete_and_reload(client: TestClient, store: PolicyStore):
    _create_role(client, "AUDITOR")
    client.post(
        "/api/policies",
        json={"role": "AUDITOR", "resource": "inventory", "action": "read"},
        headers=_headers(),
    )
    client.post("/api/bindings", json={"user_id": "user-2", "role": "AUDITOR"}, headers=_headers())

    policies = client.get("/api/policies", params={"role": "AUDITOR"}, headers=_headers()).json()["data"]
    assert [(p["domain"], p["resource"], p["action"]) for p in policies] == [("*", "inventory", "read")]

    removed = client.delete(f"/api/policies/{policies[0]['id']}", headers=_headers())
    assert removed.json()["data"]["affected"] == 1
    me = client.get("/api/permissions/me", headers=_headers("user-2", base_id="42")).json()["data"]
    assert me["roles"] == ["AUDITOR"]
    assert me["policies"] == []

    # 绕过接口直接写入存储，显式重载后生效。
    store.add_rule("p", "AUDITOR", "*", "inventory", "export")
    reload_resp = client.post("/api/policies/reload", headers=_headers()).json()["data"]
    assert reload_resp["reloaded"] is True
    me = client.get("/api/permissions/me", headers=_headers("user-2", base_id="42")).json()["data"]
    assert me["policies"] == [{"resource": "inventory", "action": "export", "domain": "*"}]


def test_binding_delete_is_soft(client: TestClient):
    _create_role(client, "DEALER")
    client.post("/api/bindings", json={"user_id": "user-3", "role": "DEALER", "domain": "42"}, headers=_headers())
    binding_id = client.get("/api/bindings", params={"user_id": "user-3"}, headers=_headers()).json()["data"][0]["id"]

    assert client.delete(f"/api/bindings/{binding_id}", headers=_headers()).json()["data"]["affected"] == 1
    assert client.delete(f"/api/bindings/{binding_id}", headers=_headers()).json()["data"]["affected"] == 0

    active = client.get("/api/bindings", params={"user_id": "user-3"}, headers=_headers()).json()["data"]
    history = client.get(
        "/api/bindings", params={"user_id": "user-3", "include_inactive": "true"}, headers=_headers()
    ).json()["data"]
    assert active == []
    assert [item["is_active"] for item in history] == [False]


def test_data_permission_rules_shape_runtime_scope(client: TestClient):
    role_id = _create_role(client, "POINT_OWNER")
    client.post("/api/policies", json={"role": "POINT_OWNER", "resource": "point", "action": "read"}, headers=_headers())
    client.post("/api/bindings", json={"user_id": "owner-1", "role": "POINT_OWNER", "domain": "42"}, headers=_headers())

    invalid = client.post(
        f"/api/roles/{role_id}/data-permissions",
        json={"resource": "point", "field": "ownerId", "operator": "in", "value_type": "currentUser"},
        headers=_headers(),
    )
    assert invalid.status_code == 422
    assert invalid.json()["error"]["code"] == "CONFIGURATION_INVALID"

    created = client.post(
        f"/api/roles/{role_id}/data-permissions",
        json={"resource": "point", "field": "ownerId", "operator": "eq", "value_type": "currentUser"},
        headers=_headers(),
    )
    assert created.status_code == 200, created.text
    rule_id = created.json()["data"]["id"]

    me = client.get("/api/permissions/me", params={"resource": "point"}, headers=_headers("owner-1", base_id="42"))
    assert me.json()["data"]["predicate"] == {"field": "ownerId", "op": "eq", "value": "owner-1"}

    updated = client.put(
        f"/api/data-permissions/{rule_id}",
        json={"field": "baseId", "value_type": "currentBase"},
        headers=_headers(),
    )
    assert updated.status_code == 200, updated.text
    me = client.get("/api/permissions/me", params={"resource": "point"}, headers=_headers("owner-1", base_id="42"))
    assert me.json()["data"]["predicate"] == {"field": "baseId", "op": "eq", "value": "42"}

    rules = client.get(f"/api/roles/{role_id}/data-permissions", headers=_headers()).json()["data"]
    assert [(r["field"], r["value_type"]) for r in rules] == [("baseId", "currentBase")]

    assert client.delete(f"/api/data-permissions/{rule_id}", headers=_headers()).json()["data"]["affected"] == 1
    me = client.get("/api/permissions/me", params={"resource": "point"}, headers=_headers("owner-1", base_id="42"))
    assert me.json()["data"]["predicate"] == {"and": []}

    missing = client.delete(f"/api/data-permissions/{rule_id}", headers=_headers())
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "DATA_RULE_NOT_FOUND"


def test_field_permissions_crud(client: TestClient):
    role_id = _create_role(client, "ANCHOR")
    client.post(
        "/api/policies",
        json={"role": "ANCHOR", "resource": "goodsLocalSetting", "action": "read"},
        headers=_headers(),
    )
    client.post("/api/bindings", json={"user_id": "anchor-1", "role": "ANCHOR", "domain": "42"}, headers=_headers())

    resp = client.put(
        f"/api/roles/{role_id}/field-permissions",
        json={
            "resource": "goodsLocalSetting",
            "fields": [{"field": "profitAmount", "can_read": False, "can_write": True}],
        },
        headers=_headers(),
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["data"]["affected"] == 1

    perms = client.get(f"/api/roles/{role_id}/field-permissions", headers=_headers()).json()["data"]
    assert [(p["field"], p["can_read"], p["can_write"]) for p in perms] == [("profitAmount", False, False)]

    me = client.get(
        "/api/permissions/me",
        params={"resource": "goodsLocalSetting"},
        headers=_headers("anchor-1", base_id="42"),
    ).json()["data"]
    assert me["fields"]["readable"] == {"all": True, "except": ["profitAmount"]}

    invalid = client.put(
        f"/api/roles/{role_id}/field-permissions",
        json={"resource": "goodsLocalSetting", "fields": [{"field": "profit-amount"}]},
        headers=_headers(),
    )
    assert invalid.status_code == 422

    reset = client.delete(f"/api/roles/{role_id}/field-permissions/goodsLocalSetting", headers=_headers())
    assert reset.json()["data"]["affected"] == 1
    me = client.get(
        "/api/permissions/me",
        params={"resource": "goodsLocalSetting"},
        headers=_headers("anchor-1", base_id="42"),
    ).json()["data"]
    assert me["fields"]["readable"] == {"all": True, "except": []}


def test_role_rename_and_delete(client: TestClient, store: PolicyStore):
    role_id = _create_role(client, "CLERK")
    client.post("/api/policies", json={"role": "CLERK", "resource": "goods", "action": "read"}, headers=_headers())
    client.post("/api/bindings", json={"user_id": "clerk-1", "role": "CLERK", "domain": "42"}, headers=_headers())

    renamed = client.put(f"/api/roles/{role_id}", json={"name": "SHOP_CLERK"}, headers=_headers())
    assert renamed.status_code == 200, renamed.text
    assert renamed.json()["data"]["affected"] == 2
    me = client.get("/api/permissions/me", headers=_headers("clerk-1", base_id="42")).json()["data"]
    assert me["roles"] == ["SHOP_CLERK"]
    assert me["policies"] == [{"resource": "goods", "action": "read", "domain": "*"}]

    deleted = client.delete(f"/api/roles/{role_id}", headers=_headers())
    assert deleted.status_code == 200, deleted.text
    assert deleted.json()["data"]["affected"] == 3
    assert store.load_all().policies == (
        ("ADMIN", "*", "permission", "manage"),
        ("SUPER_ADMIN", "*", "permission", "manage"),
    )
    me = client.get("/api/permissions/me", headers=_headers("clerk-1", base_id="42")).json()["data"]
    assert me["roles"] == []

    missing = client.delete(f"/api/roles/{role_id}", headers=_headers())
    assert missing.status_code == 404


def test_role_rename_rolls_back_when_policy_sync_fails(
    client: TestClient, store: PolicyStore, monkeypatch: pytest.MonkeyPatch
):
    role_id = _create_role(client, "CLERK")
    client.post("/api/policies", json={"role": "CLERK", "resource": "goods", "action": "read"}, headers=_headers())

    def _fail(self, old_name, new_name, *, db=None):
        raise StorageUnavailable(details={"reason": "OperationalError"})

    monkeypatch.setattr(PolicyStore, "rename_subject", _fail)
    resp = client.put(f"/api/roles/{role_id}", json={"name": "SHOP_CLERK"}, headers=_headers())
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "STORAGE_UNAVAILABLE"

    names = [role["name"] for role in client.get("/api/roles", headers=_headers()).json()["data"]]
    assert "CLERK" in names
    assert "SHOP_CLERK" not in names
    assert ("CLERK", "*", "goods", "read") in store.load_all().policies


def test_role_delete_rolls_back_when_binding_removal_fails(
    client: TestClient, store: PolicyStore, monkeypatch: pytest.MonkeyPatch
):
    role_id = _create_role(client, "CLERK")
    client.post("/api/policies", json={"role": "CLERK", "resource": "goods", "action": "read"}, headers=_headers())
    client.post("/api/bindings", json={"user_id": "clerk-1", "role": "CLERK", "domain": "42"}, headers=_headers())

    remove_matching = PolicyStore.remove_matching

    def _fail_on_bindings(self, ptype, field_index, *values, db=None):
        if ptype == PolicyType.GROUPING:
            raise StorageUnavailable(details={"reason": "OperationalError"})
        return remove_matching(self, ptype, field_index, *values, db=db)

    monkeypatch.setattr(PolicyStore, "remove_matching", _fail_on_bindings)
    resp = client.delete(f"/api/roles/{role_id}", headers=_headers())
    assert resp.status_code == 503

    snapshot = store.load_all()
    assert ("CLERK", "*", "goods", "read") in snapshot.policies
    assert ("clerk-1", "CLERK", "42") in snapshot.groupings
    me = client.get("/api/permissions/me", headers=_headers("clerk-1", base_id="42")).json()["data"]
    assert me["policies"] == [{"resource": "goods", "action": "read", "domain": "*"}]


def test_role_detail_and_permission_check(client: TestClient):
    role_id = _create_role(client, "WAREHOUSE_KEEPER")
    for resource, action in (("inventory", "read"), ("transfer", "manage")):
        client.post(
            "/api/policies",
            json={"role": "WAREHOUSE_KEEPER", "domain": "42", "resource": resource, "action": action},
            headers=_headers(),
        )
    client.post("/api/bindings", json={"user_id": "user-1", "role": "WAREHOUSE_KEEPER", "domain": "42"}, headers=_headers())

    detail = client.get(f"/api/roles/{role_id}", headers=_headers())
    assert detail.status_code == 200, detail.text
    data = detail.json()["data"]
    assert data["name"] == "WAREHOUSE_KEEPER"
    assert data["policies"] == [
        {"domain": "42", "resource": "inventory", "action": "read"},
        {"domain": "42", "resource": "transfer", "action": "manage"},
    ]
    assert data["bindings"] == [{"user_id": "user-1", "domain": "42"}]

    missing = client.get("/api/roles/00000000-0000-0000-0000-000000000000", headers=_headers())
    assert missing.status_code == 404

    def _check(**body):
        payload = {"user_id": "user-1", "domain": "42", **body}
        resp = client.post("/api/permissions/check", json=payload, headers=_headers())
        assert resp.status_code == 200, resp.text
        return resp.json()["data"]

    direct = _check(resource="inventory", action="read")
    assert (direct["allowed"], direct["via_manage"], direct["roles"]) == (True, False, ["WAREHOUSE_KEEPER"])
    managed = _check(resource="transfer", action="approve")
    assert (managed["allowed"], managed["via_manage"]) == (True, True)
    other_base = _check(resource="inventory", action="read", domain="7")
    assert (other_base["allowed"], other_base["roles"]) == (False, [])

    denied = client.post(
        "/api/permissions/check",
        json={"user_id": "user-1", "resource": "inventory", "action": "read"},
        headers=_headers("user-1"),
    )
    assert denied.status_code == 403


def test_system_roles_are_protected(client: TestClient):
    roles = client.get("/api/roles", headers=_headers()).json()["data"]
    super_admin = next(role for role in roles if role["name"] == "SUPER_ADMIN")

    deleted = client.delete(f"/api/roles/{super_admin['id']}", headers=_headers())
    assert deleted.status_code == 409
    assert deleted.json()["error"]["code"] == "SYSTEM_ROLE_PROTECTED"

    renamed = client.put(f"/api/roles/{super_admin['id']}", json={"name": "ROOT"}, headers=_headers())
    assert renamed.status_code == 409


def test_metadata_lists_catalog(client: TestClient):
    data = client.get("/api/data-permissions/metadata", headers=_headers()).json()["data"]
    assert "point" in {item["key"] for item in data["resources"]}
    assert {item["key"] for item in data["operators"]} == {"eq", "in", "contains", "notEq"}


def test_startup_fails_when_store_unavailable(tmp_path):
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'missing' / 'authz.db'}", future=True)
    broken = PolicyStore(sessionmaker(bind=engine, class_=Session))
    app = create_app(policy_store=broken)

    with pytest.raises(StorageUnavailable):
        with TestClient(app):
            pass
