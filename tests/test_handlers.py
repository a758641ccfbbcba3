"""
Tests for exception handler selection and the built-in handlers.
"""

import json
import logging

import pytest

from dispatchkit.faults import (
    AuthErrno,
    AuthenticationError,
    Fault,
    NoRouteMatch,
    RateLimitExceeded,
    UnhandledException,
    ValidationError,
)
from dispatchkit.handlers import (
    AuthenticationErrorHandler,
    ExceptionHandler,
    ValidationErrorHandler,
    resolve_exception,
    select_handler,
)
from dispatchkit.response import HttpError, JsonPayload


class LookupHandler(ExceptionHandler):
    target_type_name = "LookupError"

    def handle(self, exc):
        return JsonPayload({"lookup": str(exc)}, status=404)


class QualifiedHandler(ExceptionHandler):
    target_type_name = "builtins.KeyError"

    def handle(self, exc):
        return JsonPayload({"key": True})


class FaultHandler(ExceptionHandler):
    target_type_name = "Fault"

    def handle(self, exc):
        return JsonPayload({"fault": exc.code})


# ============================================================================
# Built-in handlers
# ============================================================================


class TestAuthenticationErrorHandler:
    def test_codes_and_default_messages(self):
        handler = AuthenticationErrorHandler()
        cases = {
            AuthErrno.NOT_FOUND: (1001, "token missing"),
            AuthErrno.INVALID: (1002, "invalid token"),
            AuthErrno.EXPIRED: (1003, "token expired"),
        }
        for errno, (code, msg) in cases.items():
            payload = handler.handle(AuthenticationError(errno))
            assert payload.data == {"code": code, "msg": msg}
            assert payload.status == 200

    def test_custom_message_kept(self):
        payload = AuthenticationErrorHandler().handle(AuthenticationError(AuthErrno.INVALID, "bad signature"))
        assert payload.data == {"code": 1002, "msg": "bad signature"}

    def test_ignores_other_exceptions(self):
        assert AuthenticationErrorHandler().handle(ValueError()) is None


class TestValidationErrorHandler:
    def test_failfast(self):
        payload = ValidationErrorHandler().handle(ValidationError("name is required", failfast=True))
        assert payload.data == {"code": 1999, "msg": "name is required"}

    def test_error_map_is_json_encoded(self):
        errors = {"name": "is required", "age": "must be a number"}
        payload = ValidationErrorHandler().handle(ValidationError(errors=errors))
        assert payload.data["code"] == 1006
        assert json.loads(payload.data["msg"]) == errors


# ============================================================================
# Selection & resolution
# ============================================================================


class TestSelectHandler:
    def test_walks_the_mro(self):
        handlers = [LookupHandler()]
        assert isinstance(select_handler(KeyError("k"), handlers), LookupHandler)
        assert select_handler(ValueError("v"), handlers) is None

    def test_most_specific_class_wins(self):
        handlers = [LookupHandler(), QualifiedHandler()]
        assert isinstance(select_handler(KeyError("k"), handlers), QualifiedHandler)
        assert isinstance(select_handler(IndexError("i"), handlers), LookupHandler)

    def test_names_match_exactly(self):
        class KeyErrorish(ExceptionHandler):
            target_type_name = "keyerror"

            def handle(self, exc):
                return JsonPayload({})

        assert select_handler(KeyError("k"), [KeyErrorish()]) is None

    def test_fault_subclasses_reach_base_handler(self):
        handler = select_handler(RateLimitExceeded(1, 0), [FaultHandler()])
        assert isinstance(handler, FaultHandler)


class TestResolveException:
    def test_unclaimed_exception_is_wrapped(self):
        exc = RuntimeError("x")
        result = resolve_exception(exc, [LookupHandler()])
        assert isinstance(result, UnhandledException)
        assert result.cause is exc
        assert result.status == 500
        assert result.metadata == {"cause": "RuntimeError"}

    def test_unclaimed_fault_is_returned(self):
        exc = NoRouteMatch("/x")
        assert resolve_exception(exc, [LookupHandler()]) is exc

    def test_claimed_exception_becomes_payload(self):
        payload = resolve_exception(KeyError("k"), [LookupHandler()])
        assert isinstance(payload, JsonPayload)
        assert payload.status == 404

    def test_failing_handler_gives_500(self, caplog):
        class Failing(ExceptionHandler):
            target_type_name = "RuntimeError"

            def handle(self, exc):
                raise ValueError("bug")

        with caplog.at_level(logging.ERROR, logger="dispatchkit.faults"):
            result = resolve_exception(RuntimeError("x"), [Failing()])

        assert isinstance(result, HttpError)
        assert result.status == 500
        assert "Failing failed for RuntimeError" in caplog.text

    def test_non_payload_result_gives_500(self, caplog):
        class Lazy(ExceptionHandler):
            target_type_name = "RuntimeError"

            def handle(self, exc):
                return {"not": "a payload"}

        with caplog.at_level(logging.ERROR, logger="dispatchkit.faults"):
            result = resolve_exception(RuntimeError("x"), [Lazy()])
        assert isinstance(result, HttpError) and result.status == 500
        assert "instead of a ResponsePayload" in caplog.text

    def test_handler_declining_gives_500(self):
        class Declining(AuthenticationErrorHandler):
            target_type_name = "ValueError"

        result = resolve_exception(ValueError("v"), [Declining()])
        assert isinstance(result, HttpError)


class TestFaults:
    def test_fault_requires_code_message_domain(self):
        with pytest.raises(TypeError, match="missing required"):
            Fault()
