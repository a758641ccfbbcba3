"""
Tests for argument binding: each binding kind, defaults and sentinels,
request param sanitizing and MapBind rules.
"""

import pytest

from dispatchkit.casting import FLOAT_UNSET, INT_UNSET
from dispatchkit.controller import (
    GET,
    ClientIp,
    Header,
    MapBind,
    PathVariable,
    RawBody,
    RequestParam,
    SanitizeMode,
    TokenClaim,
    UploadedFile,
    bind,
)
from dispatchkit.controller.binder import bind_arguments, map_bind, parse_map_rule, resolve_binding
from dispatchkit.controller.bindings import ArgumentBinding, BindingKind
from dispatchkit.controller.metadata import extract_route_rules
from dispatchkit.faults import HandlerConfigurationError
from dispatchkit.request import Request, UploadedFile as RequestFile
from dispatchkit.security import Token

from conftest import make_request, make_token


def binding(marker, arg_name="value", annotation=None) -> ArgumentBinding:
    return marker.to_binding(arg_name, annotation)


# ============================================================================
# Simple kinds
# ============================================================================


class TestSimpleKinds:
    def test_raw_request_and_token(self):
        request = make_request(headers={"Authorization": f"Bearer {make_token({'sub': 'ann'})}"})

        assert resolve_binding(ArgumentBinding(kind=BindingKind.RAW_REQUEST), request) is request
        token = resolve_binding(ArgumentBinding(kind=BindingKind.RAW_TOKEN), request)
        assert isinstance(token, Token)
        assert token.claim("sub") == "ann"

    def test_raw_token_absent(self):
        assert resolve_binding(ArgumentBinding(kind=BindingKind.RAW_TOKEN), make_request()) is None

    def test_client_ip_prefers_forwarded_for(self):
        request = make_request(headers={"X-Forwarded-For": "10.0.0.1, 10.0.0.2"})
        assert resolve_binding(binding(ClientIp()), request) == "10.0.0.1"

    def test_header_lookup_is_case_insensitive(self):
        request = make_request(headers={"X-Trace-Id": "abc"})
        assert resolve_binding(binding(Header("x-trace-id")), request) == "abc"
        assert resolve_binding(binding(Header("x-missing")), request) == ""

    def test_header_name_defaults_to_argument_name(self):
        request = make_request(headers={"token": "t1"})
        assert resolve_binding(binding(Header(), arg_name="token"), request) == "t1"

    def test_raw_body(self):
        request = make_request("POST", body="héllo")
        assert resolve_binding(binding(RawBody()), request) == "héllo"

    def test_uploaded_file(self):
        upload = RequestFile(field_name="avatar", filename="a.png", content=b"png")
        request = make_request("POST", files={"avatar": upload})

        assert resolve_binding(binding(UploadedFile("avatar")), request) is upload
        assert resolve_binding(binding(UploadedFile("other")), request) is None

    def test_unbound_parameter_is_an_error(self):
        with pytest.raises(HandlerConfigurationError):
            resolve_binding(ArgumentBinding(kind=BindingKind.NONE, arg_name="x"), make_request())

    def test_unbound_parameter_with_default_or_nullable(self):
        with_default = ArgumentBinding(kind=BindingKind.NONE, arg_name="page", default=1, has_default=True)
        nullable = ArgumentBinding(kind=BindingKind.NONE, arg_name="tag", nullable=True)

        assert resolve_binding(with_default, make_request()) == 1
        assert resolve_binding(nullable, make_request()) is None


# ============================================================================
# Scalars
# ============================================================================


class TestPathVariables:
    def test_typed_value(self):
        request = make_request()
        request.path_variables = {"id": "42"}
        assert resolve_binding(binding(PathVariable("id"), annotation=int), request) == 42

    def test_absent_uses_declared_default(self):
        value = resolve_binding(binding(PathVariable("id", default=-1), annotation=int), make_request())
        assert value == -1

    def test_absent_without_default_uses_sentinel(self):
        request = make_request()
        assert resolve_binding(binding(PathVariable("id"), annotation=int), request) == INT_UNSET
        assert resolve_binding(binding(PathVariable("f"), annotation=float), request) == FLOAT_UNSET
        assert resolve_binding(binding(PathVariable("b"), annotation=bool), request) is False
        assert resolve_binding(binding(PathVariable("s"), annotation=str), request) == ""

    def test_unconvertible_value_uses_default(self):
        request = make_request()
        request.path_variables = {"id": "abc"}
        assert resolve_binding(binding(PathVariable("id", default=7), annotation=int), request) == 7

    def test_array_type_is_rejected(self):
        with pytest.raises(HandlerConfigurationError):
            resolve_binding(binding(PathVariable("ids", type="array")), make_request())


class TestTokenClaims:
    def test_claim_cast(self):
        request = make_request(headers={"Authorization": f"Bearer {make_token({'uid': '9', 'admin': 1})}"})

        assert resolve_binding(binding(TokenClaim("uid"), annotation=int), request) == 9
        assert resolve_binding(binding(TokenClaim("admin"), annotation=bool), request) is True

    def test_missing_token_falls_back(self):
        request = make_request()
        assert resolve_binding(binding(TokenClaim("uid", default=0), annotation=int), request) == 0
        assert resolve_binding(binding(TokenClaim("name"), annotation=str), request) == ""


class TestRequestParams:
    def test_form_overrides_query(self):
        request = make_request("POST", query={"page": "1"}, form={"page": "3"})
        assert resolve_binding(binding(RequestParam("page"), annotation=int), request) == 3

    def test_string_default_when_empty(self):
        request = make_request(query={"q": ""})
        assert resolve_binding(binding(RequestParam("q", default="all"), annotation=str), request) == "all"
        assert resolve_binding(binding(RequestParam("missing"), annotation=str), request) == ""

    def test_strip_tags_by_default(self):
        request = make_request(query={"q": "<b>bold</b> &amp; more"})
        assert resolve_binding(binding(RequestParam("q"), annotation=str), request) == "bold & more"

    def test_html_purify_keeps_safe_tags(self):
        request = make_request(query={"bio": '<p onclick="x()">hi</p><script>alert(1)</script>'})
        marker = RequestParam("bio", sanitize=SanitizeMode.HTML_PURIFY)
        assert resolve_binding(binding(marker, annotation=str), request) == "<p>hi</p>"

    def test_no_sanitizing(self):
        request = make_request(query={"raw": "<i>x</i>"})
        marker = RequestParam("raw", sanitize=SanitizeMode.NONE)
        assert resolve_binding(binding(marker, annotation=str), request) == "<i>x</i>"

    def test_decimal_truncates_to_two_places(self):
        request = make_request(query={"price": "3.14159", "bad": "abc"})
        assert resolve_binding(binding(RequestParam("price", decimal=True), annotation=str), request) == "3.14"
        assert resolve_binding(binding(RequestParam("bad", decimal=True), annotation=str), request) == "0.00"

    def test_array_param(self):
        request = make_request(query={"tags": ["a", "b"]})
        assert resolve_binding(binding(RequestParam("tags", type="array")), request) == ["a", "b"]


# ============================================================================
# MapBind
# ============================================================================


class TestMapBind:
    @pytest.mark.parametrize("rule, expected", [
        ("name", ("name", "", None, False)),
        ("age:int", ("age", "int", None, False)),
        ("admin:b:false", ("admin", "bool", "false", True)),
        ("tags:array", ("tags", "array", None, False)),
    ])
    def test_parse_rule(self, rule, expected):
        assert parse_map_rule(rule) == expected

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            parse_map_rule("age:decimal")

    def test_no_rules_returns_everything(self):
        assert map_bind({"a": 1, "b": "x"}, ()) == {"a": 1, "b": "x"}

    def test_rules_filter_and_cast(self):
        data = {"name": "bob", "age": "42", "extra": True}
        result = map_bind(data, ("name", "age:int", "admin:bool:false", "nick"))
        assert result == {"name": "bob", "age": 42, "admin": False}

    def test_binding_uses_request_data_map(self):
        request = make_request(
            "POST",
            headers={"Content-Type": "application/json"},
            body='{"name": "eve", "age": "30"}',
        )
        assert resolve_binding(binding(MapBind("name", "age:i")), request) == {"name": "eve", "age": 30}


# ============================================================================
# bind_arguments
# ============================================================================


class TestBindArguments:
    def test_binds_in_parameter_order(self):
        class C:
            @GET("/{id}")
            @bind(PathVariable("id"), None, RequestParam("q"))
            def show(self, id: int, request: Request, q: str):
                pass

        [rule] = extract_route_rules(C)
        request = make_request(query={"q": "x"})
        request.path_variables = {"id": "5"}

        assert bind_arguments(rule, request) == [5, request, "x"]

    def test_error_names_index_argument_and_handler(self):
        class C:
            @GET("/{id}")
            def update(self, id: int):
                pass

        [rule] = extract_route_rules(C)
        with pytest.raises(HandlerConfigurationError) as exc_info:
            bind_arguments(rule, make_request())

        exc = exc_info.value
        assert exc.message.startswith(f"fail to inject arg0 [id] for handler {rule.handler_id}")
        assert exc.arg_index == 0
        assert exc.handler_id == rule.handler_id
        assert exc.status == 500

    def test_no_parameters(self):
        class C:
            @GET("/")
            def index(self):
                pass

        [rule] = extract_route_rules(C)
        assert bind_arguments(rule, make_request()) == []
