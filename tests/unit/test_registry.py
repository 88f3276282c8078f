"""Tests for entry creation, lifecycle transitions and purging."""

import asyncio

import pytest
from pydantic import ValidationError

from correlator.config import CorrelatorConfig
from correlator.contracts import ProcessInstanceState
from correlator.errors import (
    DuplicateKeyError,
    ForbiddenError,
    InvalidReferenceError,
    InvalidTransitionError,
    NotFoundError,
    StoreUnavailableError,
)
from correlator.persistence import InMemoryCorrelationRepository
from correlator.security import ClaimsAuthorizationPolicy, Identity
from correlator.service import CorrelationService


@pytest.mark.asyncio
async def test_created_entry_round_trips(service, alice):
    await service.create_entry(alice, "c1", "p1", "m1", "h1")

    fetched = await service.get_by_process_instance_id(alice, "p1")
    assert fetched.process_instance_id == "p1"
    assert fetched.correlation_id == "c1"
    assert fetched.process_model_id == "m1"
    assert fetched.process_model_hash == "h1"
    assert fetched.parent_process_instance_id is None
    assert fetched.state is ProcessInstanceState.running
    assert fetched.error is None
    assert fetched.owner_id == "alice"


@pytest.mark.asyncio
async def test_empty_identifiers_are_rejected(service, alice):
    with pytest.raises(ValidationError):
        await service.create_entry(alice, "", "p1", "m1", "h1")
    with pytest.raises(ValidationError):
        await service.create_entry(alice, "c1", "p1", "m1", "")


@pytest.mark.asyncio
async def test_duplicate_entry_fails(service, alice, bob):
    await service.create_entry(alice, "c1", "p1", "m1", "h1")
    with pytest.raises(DuplicateKeyError) as exc_info:
        await service.create_entry(bob, "c2", "p1", "m2", "h2")
    assert exc_info.value.identifier == "p1"


@pytest.mark.asyncio
async def test_concurrent_duplicate_entries(service, alice):
    results = await asyncio.gather(
        service.create_entry(alice, "c1", "p1", "m1", "h1"),
        service.create_entry(alice, "c1", "p1", "m1", "h1"),
        return_exceptions=True,
    )
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], DuplicateKeyError)
    assert len(await service.get_process_instances_for_correlation(alice, "c1")) == 1


@pytest.mark.asyncio
async def test_subprocess_requires_existing_parent(service, alice):
    with pytest.raises(InvalidReferenceError) as exc_info:
        await service.create_entry(
            alice, "c1", "p2", "m1", "h1", parent_process_instance_id="p1"
        )
    assert exc_info.value.identifier == "p1"


@pytest.mark.asyncio
async def test_invisible_parent_is_treated_as_missing(service, alice, bob):
    await service.create_entry(bob, "c1", "p1", "m1", "h1")
    with pytest.raises(InvalidReferenceError):
        await service.create_entry(
            alice, "c1", "p2", "m1", "h1", parent_process_instance_id="p1"
        )


@pytest.mark.asyncio
async def test_finish_then_finish_again_fails(service, alice):
    await service.create_entry(alice, "c1", "p1", "m1", "h1")

    finished = await service.finish_process_instance(alice, "c1", "p1")
    assert finished.state is ProcessInstanceState.finished

    with pytest.raises(InvalidTransitionError):
        await service.finish_process_instance(alice, "c1", "p1")
    with pytest.raises(InvalidTransitionError):
        await service.finish_process_instance_with_error(alice, "c1", "p1", ValueError("x"))


@pytest.mark.asyncio
async def test_finish_with_error_stores_payload(service, alice):
    await service.create_entry(alice, "c1", "p1", "m1", "h1")

    failed = await service.finish_process_instance_with_error(
        alice, "c1", "p1", RuntimeError("disk full")
    )
    assert failed.state is ProcessInstanceState.error

    fetched = await service.get_by_process_instance_id(alice, "p1")
    assert fetched.error == {"name": "RuntimeError", "message": "disk full"}
    assert fetched.finished_at is not None

    with pytest.raises(InvalidTransitionError):
        await service.finish_process_instance(alice, "c1", "p1")


@pytest.mark.asyncio
async def test_finish_with_mismatched_correlation_is_not_found(service, alice):
    await service.create_entry(alice, "c1", "p1", "m1", "h1")
    await service.create_entry(alice, "c2", "p2", "m1", "h1")

    with pytest.raises(NotFoundError):
        await service.finish_process_instance(alice, "c2", "p1")
    with pytest.raises(NotFoundError):
        await service.finish_process_instance(alice, "c1", "missing")
    fetched = await service.get_by_process_instance_id(alice, "p1")
    assert fetched.state is ProcessInstanceState.running


@pytest.mark.asyncio
async def test_finish_of_invisible_instance_is_not_found(service, alice, bob):
    await service.create_entry(bob, "c1", "p1", "m1", "h1")
    with pytest.raises(NotFoundError):
        await service.finish_process_instance(alice, "c1", "p1")


@pytest.mark.asyncio
async def test_finish_of_visible_foreign_instance_is_forbidden(service, bob, auditor):
    await service.create_entry(bob, "c1", "p1", "m1", "h1")
    with pytest.raises(ForbiddenError):
        await service.finish_process_instance(auditor, "c1", "p1")
    with pytest.raises(ForbiddenError):
        await service.finish_process_instance_with_error(auditor, "c1", "p1", {"x": 1})


@pytest.mark.asyncio
async def test_superadmin_may_finish_any_instance(service, bob, admin):
    await service.create_entry(bob, "c1", "p1", "m1", "h1")
    finished = await service.finish_process_instance(admin, "c1", "p1")
    assert finished.state is ProcessInstanceState.finished


@pytest.mark.asyncio
async def test_concurrent_finish_has_single_winner(service, alice):
    await service.create_entry(alice, "c1", "p1", "m1", "h1")
    results = await asyncio.gather(
        service.finish_process_instance(alice, "c1", "p1"),
        service.finish_process_instance_with_error(alice, "c1", "p1", {"message": "x"}),
        return_exceptions=True,
    )
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], InvalidTransitionError)


@pytest.mark.asyncio
async def test_purge_requires_claim(service, alice):
    await service.create_entry(alice, "c1", "p1", "m1", "h1")
    with pytest.raises(ForbiddenError):
        await service.delete_correlation_by_process_model_id(alice, "m1")
    assert await service.get_by_process_instance_id(alice, "p1")


@pytest.mark.asyncio
async def test_purge_removes_correlations_and_instances(service, alice, admin):
    await service.create_entry(alice, "c1", "p1", "m1", "h1")
    await service.create_entry(alice, "c1", "p2", "m1", "h1", parent_process_instance_id="p1")
    await service.create_entry(alice, "c2", "p3", "m2", "h2")

    removed = await service.delete_correlation_by_process_model_id(admin, "m1")

    assert removed == ["c1"]
    assert await service.get_by_process_model_id(alice, "m1") == []
    with pytest.raises(NotFoundError):
        await service.get_by_process_instance_id(alice, "p1")
    with pytest.raises(NotFoundError):
        await service.get_by_correlation_id(alice, "c1")
    assert [c.correlation_id for c in await service.get_all(alice)] == ["c2"]


class SlowRepository(InMemoryCorrelationRepository):
    async def get_process_instance(self, process_instance_id):
        await asyncio.sleep(1)
        return await super().get_process_instance(process_instance_id)


@pytest.mark.asyncio
async def test_slow_store_surfaces_as_unavailable(alice):
    service = CorrelationService(
        SlowRepository(), config=CorrelatorConfig(store_timeout=0.05)
    )
    with pytest.raises(StoreUnavailableError) as exc_info:
        await service.get_by_process_instance_id(alice, "p1")
    assert exc_info.value.retryable
    assert not isinstance(exc_info.value, NotFoundError)


@pytest.mark.asyncio
async def test_finish_with_error_without_payload_records_generic_error(service, alice):
    await service.create_entry(alice, "c1", "p1", "m1", "h1")

    failed = await service.finish_process_instance_with_error(alice, "c1", "p1", None)

    assert failed.state is ProcessInstanceState.error
    assert failed.error == {"name": "Error", "message": ""}
    fetched = await service.get_by_process_instance_id(alice, "p1")
    assert fetched.error == {"name": "Error", "message": ""}


@pytest.mark.asyncio
async def test_purged_parent_does_not_adopt_new_instance(service, admin):
    await service.create_entry(admin, "c1", "p1", "m1", "h1")
    await service.create_entry(
        admin, "c2", "child", "m2", "h2", parent_process_instance_id="p1"
    )
    assert await service.delete_correlation_by_process_model_id(admin, "m1") == ["c1"]

    with pytest.raises(DuplicateKeyError):
        await service.create_entry(admin, "c3", "p1", "m3", "h3")

    children = await service.get_subprocesses_for_process_instance(admin, "p1")
    assert [c.process_instance_id for c in children] == ["child"]
    with pytest.raises(NotFoundError):
        await service.get_by_correlation_id(admin, "c3")


class TenantPolicy(ClaimsAuthorizationPolicy):
    def owner_of(self, identity):
        return identity.claims.get("tenant", identity.user_id)


@pytest.mark.asyncio
async def test_owner_is_derived_by_the_policy():
    service = CorrelationService(InMemoryCorrelationRepository(), policy=TenantPolicy())
    alice = Identity(user_id="alice", claims={"tenant": "acme"})
    bob = Identity(user_id="bob", claims={"tenant": "acme"})

    created = await service.create_entry(alice, "c1", "p1", "m1", "h1")
    assert created.owner_id == "acme"

    finished = await service.finish_process_instance(bob, "c1", "p1")
    assert finished.state is ProcessInstanceState.finished
