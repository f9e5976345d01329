import logging

import jwt
import pytest

from base_authz.core.config import get_settings
from base_authz.errors import AuthenticationRequired, PermissionDenied, TenantRequired
from base_authz.pipeline import RequestPipeline
from base_authz.services.data_scope import MATCH_ALL, Condition
from base_authz.services.enforcer import Enforcer
from base_authz.services.policy_store import PolicyStore
from base_authz.services.scope_config import ScopeRegistry


def _bearer(claims: dict) -> str:
    return "Bearer " + jwt.encode(claims, get_settings().auth_jwt_secret, algorithm="HS256")


@pytest.fixture
def pipeline(store: PolicyStore, make_role, add_data_rule, add_field_permission) -> RequestPipeline:
    owner_id = make_role("POINT_OWNER")
    anchor_id = make_role("ANCHOR")
    make_role("MANAGER")
    add_data_rule(owner_id, "point", "ownerId", "eq", "currentUser")
    add_field_permission(anchor_id, "goodsLocalSetting", "profitAmount", can_read=False, can_write=False)

    store.add_rule("p", "POINT_OWNER", "*", "point", "read")
    store.add_rule("p", "ANCHOR", "42", "goodsLocalSetting", "read")
    store.add_rule("p", "ANCHOR", "42", "goodsLocalSetting", "update")
    store.add_rule("p", "MANAGER", "*", "point", "manage")
    store.add_rule("g", "owner-1", "POINT_OWNER", "42")
    store.add_rule("g", "anchor-1", "ANCHOR", "42")
    store.add_rule("g", "manager-1", "MANAGER", "*")

    enforcer = Enforcer(store)
    enforcer.load()
    registry = ScopeRegistry(store)
    registry.load()
    return RequestPipeline(enforcer, registry)


def test_missing_or_inactive_credentials_are_rejected(pipeline: RequestPipeline):
    with pytest.raises(AuthenticationRequired):
        pipeline.authorize(None, "42", "point", "read")
    with pytest.raises(AuthenticationRequired) as exc:
        pipeline.authorize(_bearer({"sub": "owner-1", "active": False}), "42", "point", "read")
    assert exc.value.details["reason"] == "inactive_user"
    with pytest.raises(AuthenticationRequired):
        pipeline.authorize("Bearer {{token}}", "42", "point", "read")


def test_tenant_scoped_check_requires_base(pipeline: RequestPipeline):
    with pytest.raises(TenantRequired):
        pipeline.authorize(_bearer({"sub": "owner-1"}), None, "point", "read")
    with pytest.raises(TenantRequired):
        pipeline.authorize(_bearer({"sub": "owner-1"}), "*", "point", "read")


def test_base_claim_is_used_when_header_missing(pipeline: RequestPipeline):
    ctx = pipeline.authorize(_bearer({"sub": "owner-1", "base_id": 42}), None, "point", "read")
    assert ctx.domain == "42"

    identity = pipeline.authenticate(_bearer({"sub": "owner-1", "base_id": 42}))
    assert pipeline.resolve_domain(identity, "7") == "7"


def test_denied_request_reports_missing_permission(pipeline, caplog):
    with caplog.at_level(logging.WARNING, logger="base_authz.pipeline"):
        with pytest.raises(PermissionDenied) as exc:
            pipeline.authorize(_bearer({"sub": "anchor-1"}), "7", "goodsLocalSetting", "read")

    assert exc.value.details == {"resource": "goodsLocalSetting", "action": "read", "domain": "7"}
    assert "permission denied user=anchor-1 domain=7" in caplog.text


def test_manage_grants_finer_actions_unless_disabled(pipeline: RequestPipeline):
    ctx = pipeline.authorize(_bearer({"sub": "manager-1"}), "42", "point", "update")
    assert ctx.roles == frozenset({"MANAGER"})
    assert ctx.predicate == MATCH_ALL

    with pytest.raises(PermissionDenied):
        pipeline.authorize(_bearer({"sub": "manager-1"}), "42", "point", "update", allow_manage=False)


def test_system_level_check_uses_global_domain(pipeline: RequestPipeline):
    ctx = pipeline.authorize(_bearer({"sub": "manager-1"}), None, "point", "read", tenant_scoped=False)
    assert ctx.domain == "*"

    with pytest.raises(PermissionDenied):
        pipeline.authorize(_bearer({"sub": "owner-1"}), "42", "point", "read", tenant_scoped=False)


def test_execute_applies_scope_and_field_mask(pipeline: RequestPipeline):
    rows = [{"id": "p1", "ownerId": "owner-1"}, {"id": "p2", "ownerId": "someone"}]

    result = pipeline.execute(
        lambda ctx: [row for row in rows if ctx.matches(row)],
        authorization=_bearer({"sub": "owner-1"}),
        requested_domain="42",
        resource="point",
        action="read",
    )
    assert result == [{"id": "p1", "ownerId": "owner-1"}]

    settings = pipeline.execute(
        lambda ctx: {"id": "s1", "alias": "A", "profitAmount": 9.9},
        authorization=_bearer({"sub": "anchor-1"}),
        requested_domain="42",
        resource="goodsLocalSetting",
        action="read",
    )
    assert settings == {"id": "s1", "alias": "A"}


def test_inject_exposes_predicate_and_writable_fields(pipeline: RequestPipeline):
    ctx = pipeline.authorize(_bearer({"sub": "owner-1"}), "42", "point", "read")
    assert ctx.predicate == Condition("ownerId", "eq", "owner-1")

    anchor = pipeline.authorize(_bearer({"sub": "anchor-1"}), "42", "goodsLocalSetting", "update")
    assert anchor.writable({"alias": "B", "profitAmount": 1}) == {"alias": "B"}


def test_reload_picks_up_store_changes(pipeline: RequestPipeline, store: PolicyStore):
    store.add_rule("p", "POINT_OWNER", "*", "pointOrder", "read")
    with pytest.raises(PermissionDenied):
        pipeline.authorize(_bearer({"sub": "owner-1"}), "42", "pointOrder", "read")

    assert pipeline.reload() is True
    ctx = pipeline.authorize(_bearer({"sub": "owner-1"}), "42", "pointOrder", "read")
    assert ctx.predicate == MATCH_ALL
