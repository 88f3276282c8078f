"""Tests for the error taxonomy and result wrappers."""

import pytest

from correlator.errors import (
    DuplicateKeyError,
    ErrorKind,
    Failure,
    NotFoundError,
    Ok,
    StoreUnavailableError,
    capture,
)


async def _succeed():
    return 42


async def _fail_not_found():
    raise NotFoundError("p1")


async def _fail_unexpectedly():
    raise RuntimeError("bug")


def test_errors_carry_kind_and_identifier():
    err = DuplicateKeyError("p1", "process instance 'p1' already exists")
    assert err.kind is ErrorKind.duplicate_key
    assert err.identifier == "p1"
    assert str(err) == "process instance 'p1' already exists"
    assert not err.retryable


def test_default_message_names_kind_and_identifier():
    assert NotFoundError("c7").message == "not_found: c7"


def test_store_unavailable_is_retryable():
    assert StoreUnavailableError("scan").retryable


@pytest.mark.asyncio
async def test_capture_wraps_success():
    result = await capture(_succeed())
    assert isinstance(result, Ok)
    assert result.ok is True
    assert result.value == 42


@pytest.mark.asyncio
async def test_capture_folds_correlator_errors():
    result = await capture(_fail_not_found())
    assert isinstance(result, Failure)
    assert result.ok is False
    assert result.kind is ErrorKind.not_found
    assert result.identifier == "p1"
    assert result.retryable is False


@pytest.mark.asyncio
async def test_capture_propagates_other_exceptions():
    with pytest.raises(RuntimeError):
        await capture(_fail_unexpectedly())
