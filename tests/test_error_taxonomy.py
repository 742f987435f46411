"""
Unit tests for error classification.
"""
import pytest
import requests

from catalog_inspector.core.error_taxonomy import (
    ConfigurationError,
    ErrorCategory,
    ErrorSeverity,
    FunnelSourceError,
    LinkResolutionError,
    StorageError,
    classify_error,
)


class TestStorageError:
    """Tests for status-code categorization."""

    @pytest.mark.parametrize("status,category", [
        (None, ErrorCategory.STORAGE_UNAVAILABLE),
        (401, ErrorCategory.AUTHENTICATION_FAILED),
        (403, ErrorCategory.AUTHENTICATION_FAILED),
        (404, ErrorCategory.RECORD_NOT_FOUND),
        (408, ErrorCategory.REQUEST_TIMEOUT),
        (409, ErrorCategory.WRITE_REJECTED),
        (429, ErrorCategory.RATE_LIMITED),
        (502, ErrorCategory.STORAGE_UNAVAILABLE),
    ])
    def test_status_mapping(self, status, category):
        assert StorageError("x", status_code=status).category == category

    def test_server_errors_are_retryable(self):
        error = StorageError("x", status_code=503)
        assert error.recoverable
        assert error.recovery_actions[0].action_type == "retry"

    def test_stale_record_suggests_refresh(self):
        error = StorageError("gone", status_code=404, context={"entity_kind": "recipes"})
        assert error.recovery_actions[0].action_type == "refresh"
        assert error.recovery_actions[0].parameters == {"entity_kind": "recipes"}
        assert StorageError("gone", status_code=404).recovery_actions == []

    def test_classify_keeps_context(self):
        classified = StorageError("denied", status_code=403, context={"path": "admin/catalog/update"}).classify()
        assert classified.user_message == "Not authorized to change this record. Sign in again."
        assert classified.to_dict()["context"] == {"path": "admin/catalog/update"}


class TestClassifyError:
    """Tests for classify_error heuristics."""

    def test_inspector_error_passthrough(self):
        classified = classify_error(FunnelSourceError("down"), operation="summary", context={"kind": "waitlist"})
        assert classified.category == ErrorCategory.FUNNEL_SOURCE_UNAVAILABLE
        assert classified.severity == ErrorSeverity.LOW
        assert classified.operation == "summary"
        assert classified.context["kind"] == "waitlist"

    def test_timeout(self):
        assert classify_error(requests.Timeout("slow")).category == ErrorCategory.REQUEST_TIMEOUT
        assert classify_error(RuntimeError("read timed out")).category == ErrorCategory.REQUEST_TIMEOUT

    def test_rate_limit_and_auth(self):
        assert classify_error(RuntimeError("HTTP 429")).category == ErrorCategory.RATE_LIMITED
        assert classify_error(RuntimeError("401 Unauthorized")).category == ErrorCategory.AUTHENTICATION_FAILED

    def test_connection(self):
        assert classify_error(requests.ConnectionError("refused")).category == ErrorCategory.STORAGE_UNAVAILABLE

    def test_programming_errors(self):
        classified = classify_error(KeyError("id"))
        assert classified.category == ErrorCategory.INTERNAL_ERROR
        assert classified.stack_trace

    def test_unknown(self):
        classified = classify_error(RuntimeError("odd"))
        assert classified.category == ErrorCategory.UNKNOWN_ERROR
        assert classified.user_message == "An error occurred: odd"


class TestReadPathErrors:
    """Tests for errors that degrade locally."""

    def test_link_resolution(self):
        classified = classify_error(LinkResolutionError("lookup failed", context={"field": "equipment_ids"}))
        assert classified.category == ErrorCategory.LINK_RESOLUTION_FAILED
        assert classified.recoverable
        assert classified.recovery_actions[0].action_type == "fallback"

    def test_configuration(self):
        error = ConfigurationError("no base url")
        assert error.category == ErrorCategory.CONFIGURATION_ERROR
        assert error.severity == ErrorSeverity.CRITICAL
        assert not error.recoverable
