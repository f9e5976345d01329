import logging
import threading

import pytest

from base_authz.errors import StorageUnavailable
from base_authz.services.enforcer import Enforcer, PolicyGraph
from base_authz.services.policy_store import PolicyStore


@pytest.fixture
def enforcer(store: PolicyStore) -> Enforcer:
    instance = Enforcer(store)
    instance.load()
    return instance


def test_policy_graph_prefers_tenant_roles_over_global():
    graph = PolicyGraph.build(
        policies=[("CASHIER", "42", "order", "create"), ("VIEWER", "*", "order", "read")],
        groupings=[("u1", "CASHIER", "42"), ("u1", "VIEWER", "*")],
    )

    assert graph.effective_roles("u1", "42") == frozenset({"CASHIER"})
    assert graph.effective_roles("u1", "7") == frozenset({"VIEWER"})
    assert graph.domains_for("u1") == frozenset({"42", "*"})
    assert graph.allows("u1", "42", "order", "create")
    # 基地内已有分配时不再回退到全局角色。
    assert not graph.allows("u1", "42", "order", "read")
    assert graph.allows("u1", "7", "order", "read")


def test_warehouse_keeper_is_scoped_to_its_base(enforcer: Enforcer, make_role):
    make_role("WAREHOUSE_KEEPER")
    enforcer.add_policy("WAREHOUSE_KEEPER", "42", "inventory", "read")
    enforcer.add_role_for_user("user-1", "WAREHOUSE_KEEPER", "42")

    assert enforcer.enforce("user-1", "42", "inventory", "read") is True
    assert enforcer.enforce("user-1", "7", "inventory", "read") is False
    assert enforcer.get_roles_for_user_in_domain("user-1", "42") == ["WAREHOUSE_KEEPER"]
    assert enforcer.get_domains_for_user("user-1") == ["42"]


def test_global_binding_is_used_when_base_has_none(enforcer: Enforcer, make_role):
    make_role("AUDITOR")
    enforcer.add_policy("AUDITOR", "*", "inventory", "read")
    enforcer.add_role_for_user("user-2", "AUDITOR", "*")

    assert enforcer.enforce("user-2", "42", "inventory", "read") is True
    assert enforcer.enforce("user-2", "42", "inventory", "read") == enforcer.enforce_system(
        "user-2", "inventory", "read"
    )


def test_matching_is_exact_on_action(enforcer: Enforcer, make_role):
    make_role("MANAGER")
    enforcer.add_policy("MANAGER", "*", "point", "manage")
    enforcer.add_role_for_user("user-3", "MANAGER", "*")

    assert enforcer.enforce("user-3", "42", "point", "manage") is True
    assert enforcer.enforce("user-3", "42", "point", "read") is False


def test_remove_then_reload_flips_result(enforcer: Enforcer, store: PolicyStore, make_role):
    make_role("WAREHOUSE_KEEPER")
    enforcer.add_policy("WAREHOUSE_KEEPER", "42", "inventory", "read")
    enforcer.add_role_for_user("user-1", "WAREHOUSE_KEEPER", "42")
    assert enforcer.enforce("user-1", "42", "inventory", "read") is True

    # 直接写存储，内存图要等到 reload 才变化。
    store.remove_rule("p", "WAREHOUSE_KEEPER", "42", "inventory", "read")
    assert enforcer.enforce("user-1", "42", "inventory", "read") is True
    assert enforcer.reload() is True
    assert enforcer.enforce("user-1", "42", "inventory", "read") is False

    store.add_rule("p", "WAREHOUSE_KEEPER", "42", "inventory", "read")
    assert enforcer.reload() is True
    assert enforcer.enforce("user-1", "42", "inventory", "read") is True


def test_incremental_writes_update_memory_and_store(enforcer: Enforcer, store: PolicyStore, make_role):
    make_role("DEALER")
    assert enforcer.add_policy("DEALER", "*", "point", "read") is True
    assert enforcer.add_policy("DEALER", "*", "point", "read") is False
    enforcer.add_role_for_user("u1", "DEALER", "42")
    enforcer.add_role_for_user("u2", "DEALER", "*")

    assert enforcer.snapshot() == store.load_all()

    assert enforcer.remove_role_for_user("u1", "DEALER", "42") == 1
    assert enforcer.enforce("u1", "42", "point", "read") is False
    assert enforcer.remove_policy("DEALER", "*", "point", "read") == 1
    assert enforcer.get_role_policies("DEALER") == []

    enforcer.add_policy("DEALER", "*", "pointOrder", "read")
    assert enforcer.remove_role_policies("DEALER") == 1
    assert enforcer.remove_role_bindings("DEALER") == 1
    assert enforcer.get_all_policies() == []
    assert enforcer.get_all_groupings() == []
    assert store.load_all().groupings == ()


def test_load_failure_is_fatal(store: PolicyStore, monkeypatch: pytest.MonkeyPatch):
    def _unavailable():
        raise StorageUnavailable()

    monkeypatch.setattr(store, "load_all", _unavailable)
    enforcer = Enforcer(store)
    with pytest.raises(StorageUnavailable):
        enforcer.load()
    assert enforcer.loaded is False


def test_reload_failure_keeps_previous_graph(enforcer, store, make_role, monkeypatch, caplog):
    make_role("WAREHOUSE_KEEPER")
    enforcer.add_policy("WAREHOUSE_KEEPER", "42", "inventory", "read")
    enforcer.add_role_for_user("user-1", "WAREHOUSE_KEEPER", "42")
    previous = enforcer.graph

    def _unavailable():
        raise StorageUnavailable()

    monkeypatch.setattr(store, "load_all", _unavailable)
    with caplog.at_level(logging.ERROR, logger="base_authz.enforcer"):
        assert enforcer.reload() is False

    assert enforcer.graph is previous
    assert enforcer.enforce("user-1", "42", "inventory", "read") is True
    assert "keeping previous graph" in caplog.text


def test_concurrent_reload_never_exposes_partial_graph(enforcer: Enforcer, make_role):
    make_role("WAREHOUSE_KEEPER")
    enforcer.add_policy("WAREHOUSE_KEEPER", "42", "inventory", "read")
    enforcer.add_role_for_user("user-1", "WAREHOUSE_KEEPER", "42")
    stop = threading.Event()

    def _reload_loop():
        while not stop.is_set():
            enforcer.reload()

    worker = threading.Thread(target=_reload_loop)
    worker.start()
    try:
        results = {enforcer.enforce("user-1", "42", "inventory", "read") for _ in range(500)}
    finally:
        stop.set()
        worker.join()

    assert results == {True}
