"""Tests for the claims policy and the authorization filter."""

import pytest

from correlator.config import AuthorizationConfig
from correlator.contracts import Correlation, ProcessInstance, ProcessInstanceState
from correlator.errors import ForbiddenError, NotFoundError
from correlator.security import AuthorizationFilter, ClaimsAuthorizationPolicy, Identity


def _instance(pid: str, owner: str | None, state=ProcessInstanceState.running) -> ProcessInstance:
    return ProcessInstance(
        process_instance_id=pid,
        correlation_id="c1",
        process_model_id="m1",
        process_model_hash="h1",
        owner_id=owner,
        state=state,
    )


@pytest.fixture
def auth():
    return AuthorizationFilter(ClaimsAuthorizationPolicy())


def test_owner_reads_and_modifies_own_instances(alice):
    policy = ClaimsAuthorizationPolicy()
    mine = _instance("p1", "alice")
    theirs = _instance("p2", "bob")
    assert policy.can_read(alice, mine)
    assert policy.can_modify(alice, mine)
    assert not policy.can_read(alice, theirs)
    assert not policy.can_modify(alice, theirs)


def test_unowned_instances_are_hidden_from_regular_users():
    policy = ClaimsAuthorizationPolicy()
    assert not policy.can_read(Identity(user_id=""), _instance("p1", None))


def test_superadmin_claim_grants_everything(admin):
    policy = ClaimsAuthorizationPolicy()
    theirs = _instance("p2", "bob")
    assert policy.can_read(admin, theirs)
    assert policy.can_modify(admin, theirs)
    assert policy.can_purge(admin, "m1")


def test_reader_claim_grants_visibility_only(auditor):
    policy = ClaimsAuthorizationPolicy()
    theirs = _instance("p2", "bob")
    assert policy.can_read(auditor, theirs)
    assert not policy.can_modify(auditor, theirs)
    assert not policy.can_purge(auditor, "m1")


def test_claim_names_are_configurable():
    policy = ClaimsAuthorizationPolicy(AuthorizationConfig(superadmin_claim="root"))
    root = Identity(user_id="ops", claims={"root": True})
    falsy = Identity(user_id="ops", claims={"root": False})
    assert policy.can_modify(root, _instance("p1", "bob"))
    assert not policy.can_read(falsy, _instance("p1", "bob"))


def test_filter_instances_keeps_order(auth, alice):
    records = [_instance("a", "alice"), _instance("b", "bob"), _instance("c", "alice")]
    visible = auth.filter_process_instances(alice, records)
    assert [r.process_instance_id for r in visible] == ["a", "c"]


def test_filter_correlations_narrows_and_drops(auth, alice):
    shared = Correlation(
        correlation_id="shared",
        process_instances=[
            _instance("a", "alice", ProcessInstanceState.finished),
            _instance("b", "bob"),
        ],
    )
    foreign = Correlation(correlation_id="foreign", process_instances=[_instance("c", "bob")])

    visible = auth.filter_correlations(alice, [shared, foreign])

    assert [c.correlation_id for c in visible] == ["shared"]
    assert [i.process_instance_id for i in visible[0].process_instances] == ["a"]
    # state still reflects bob's running instance
    assert visible[0].state is ProcessInstanceState.running
    assert len(shared.process_instances) == 2


def test_ensure_visible_hides_forbidden_records_as_not_found(auth, alice):
    with pytest.raises(NotFoundError):
        auth.ensure_visible(alice, _instance("p2", "bob"), "p2")
    with pytest.raises(NotFoundError):
        auth.ensure_visible(alice, None, "p9")
    mine = _instance("p1", "alice")
    assert auth.ensure_visible(alice, mine, "p1") is mine


def test_ensure_modifiable_raises_forbidden(auth, auditor):
    with pytest.raises(ForbiddenError) as exc_info:
        auth.ensure_modifiable(auditor, _instance("p2", "bob"))
    assert exc_info.value.identifier == "p2"


def test_ensure_can_purge(auth, alice, admin):
    with pytest.raises(ForbiddenError):
        auth.ensure_can_purge(alice, "m1")
    auth.ensure_can_purge(admin, "m1")


def test_owner_is_taken_from_the_policy(auth, alice):
    assert ClaimsAuthorizationPolicy().owner_of(alice) == "alice"
    assert auth.owner_of(alice) == "alice"
