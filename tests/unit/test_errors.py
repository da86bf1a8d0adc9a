"""
Unit tests for error classification.
"""

import pytest

from changes_sdk.errors import (
    ChangesError,
    ConfigurationError,
    FatalServerError,
    MalformedResponseError,
    TransientServerError,
    TransportError,
    error_for_status,
    is_fatal_status,
)


class TestClassification:
    """Tests for is_fatal_status and error_for_status."""

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 409, 412, 499])
    def test_client_errors_are_fatal(self, status):
        assert is_fatal_status(status)
        assert isinstance(error_for_status(status), FatalServerError)

    @pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
    def test_rate_limit_and_server_errors_are_transient(self, status):
        assert not is_fatal_status(status)
        error = error_for_status(status)
        assert isinstance(error, TransientServerError)
        assert not error.fatal

    def test_missing_status_is_transient(self):
        assert not is_fatal_status(None)
        assert not TransientServerError("connection reset").fatal

    def test_reason_in_message(self):
        error = error_for_status(401, "Name or password is incorrect.")
        assert error.status_code == 401
        assert error.reason == "Name or password is incorrect."
        assert str(error) == "Changes request failed with status 401: Name or password is incorrect."
        assert error.details == {"status_code": 401, "reason": "Name or password is incorrect."}

    def test_message_without_reason(self):
        assert str(error_for_status(503)) == "Changes request failed with status 503"


class TestHierarchy:
    """Tests for the exception hierarchy."""

    def test_all_errors_are_changes_errors(self):
        for error in (
            ConfigurationError("bad"),
            TransientServerError("flaky"),
            FatalServerError("denied", 403),
            MalformedResponseError("junk", "<html>"),
        ):
            assert isinstance(error, ChangesError)

    def test_malformed_response_is_transient_without_status(self):
        error = MalformedResponseError("junk", ["not", "an", "object"])
        assert isinstance(error, TransportError)
        assert isinstance(error, TransientServerError)
        assert error.status_code is None
        assert not error.fatal
        assert error.code == "MALFORMED_RESPONSE"
        assert error.details["body_type"] == "list"

    def test_configuration_error_names_option(self):
        error = ConfigurationError("batch_size must be >= 1", option="batch_size")
        assert error.code == "CONFIGURATION_ERROR"
        assert error.option == "batch_size"
        assert error.details == {"option": "batch_size"}

    def test_default_code(self):
        assert ChangesError("x").code == "CHANGES_ERROR"
        assert FatalServerError("x", 400).code == "FATAL_SERVER_ERROR"
