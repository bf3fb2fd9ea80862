# tests/unit/domain/test_error_mapping.py
from __future__ import annotations

import pytest

from herdguard.domain.enums.error_code import ErrorCode, ErrorKind
from herdguard.domain.exceptions.resolution import OperationCancelled, UpstreamError
from herdguard.domain.services.error_mapping import (
    classify,
    default_should_negative_cache,
    is_negative_cacheable,
    map_error,
)


@pytest.mark.parametrize(
    ("status", "expected_status", "expected_code"),
    [
        (404, 404, ErrorCode.UPSTREAM_NOT_FOUND.value),
        (429, 429, ErrorCode.UPSTREAM_RATE_LIMITED.value),
        (503, 503, ErrorCode.UPSTREAM_UNAVAILABLE.value),
        (500, 502, ErrorCode.UPSTREAM_BAD_GATEWAY.value),
        (502, 502, ErrorCode.UPSTREAM_BAD_GATEWAY.value),
        (504, 502, ErrorCode.UPSTREAM_BAD_GATEWAY.value),
    ],
)
def test_upstream_statuses_map_deterministically(
    status: int, expected_status: int, expected_code: str
) -> None:
    info = map_error(UpstreamError("upstream said no", status=status))
    assert info.status == expected_status
    assert info.code == expected_code


def test_other_client_errors_keep_status_and_code() -> None:
    info = map_error(UpstreamError("Invalid handle", status=400, code="INVALID_HANDLE"))
    assert (info.status, info.code, info.message) == (400, "INVALID_HANDLE", "Invalid handle")

    info = map_error(UpstreamError("", status=403))
    assert (info.status, info.code, info.message) == (403, "BAD_REQUEST", "Bad Request")


def test_not_found_keeps_upstream_message() -> None:
    assert map_error(UpstreamError("Channel not found", status=404)).message == "Channel not found"


def test_code_accepts_enum_member() -> None:
    err = UpstreamError("x", status=422, code=ErrorCode.BAD_REQUEST)
    assert err.code == "BAD_REQUEST"


def test_timeout_cancel_and_unknown() -> None:
    assert map_error(TimeoutError()).status == 504
    assert map_error(TimeoutError()).code == ErrorCode.UPSTREAM_TIMEOUT.value

    cancelled = map_error(OperationCancelled())
    assert (cancelled.status, cancelled.code) == (499, ErrorCode.CLIENT_CLOSED_REQUEST.value)

    unknown = map_error(RuntimeError("secret stack detail"))
    assert unknown.status == 500
    assert unknown.code == ErrorCode.INTERNAL_ERROR.value
    assert "secret" not in unknown.message


@pytest.mark.parametrize(
    ("status", "kind"),
    [
        (400, ErrorKind.CLIENT),
        (404, ErrorKind.CLIENT),
        (422, ErrorKind.CLIENT),
        (408, ErrorKind.TRANSIENT),
        (429, ErrorKind.TRANSIENT),
        (499, ErrorKind.CANCELLED),
        (500, ErrorKind.TRANSIENT),
        (503, ErrorKind.TRANSIENT),
        (504, ErrorKind.TRANSIENT),
    ],
)
def test_classify(status: int, kind: ErrorKind) -> None:
    assert classify(status) is kind
    assert is_negative_cacheable(status) is (kind is ErrorKind.CLIENT)
    assert default_should_negative_cache(status, "ANY") is (kind is ErrorKind.CLIENT)


@pytest.mark.parametrize(
    "exc", [ConnectionAbortedError(), ConnectionResetError("peer reset"), BrokenPipeError()]
)
def test_aborted_connections_map_to_upstream_aborted(exc: OSError) -> None:
    info = map_error(exc)
    assert (info.status, info.code) == (502, ErrorCode.UPSTREAM_ABORTED.value)
    assert info.message == "Upstream request aborted"
    assert is_negative_cacheable(info.status) is False
