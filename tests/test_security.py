"""
Tests for bearer token parsing, signing and verification.
"""

import base64
import json
import time

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from dispatchkit.casting import INT_UNSET
from dispatchkit.security import CorsSettings, HmacTokenVerifier, JwtSettings, Token, VerifyResult, sign_token

from conftest import JWT_SETTINGS


def b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def rs256_token(claims, private_key) -> str:
    header = b64(json.dumps({"alg": "RS256", "typ": "JWT"}).encode())
    payload = b64(json.dumps(claims).encode())
    signature = private_key.sign(f"{header}.{payload}".encode(), padding.PKCS1v15(), hashes.SHA256())
    return f"{header}.{payload}.{b64(signature)}"


# ============================================================================
# Token parsing
# ============================================================================


class TestToken:
    def test_parse_signed_token(self):
        token = Token.parse(sign_token({"uid": 5, "name": "ann"}, JWT_SETTINGS))

        assert token.header == {"alg": "HS256", "typ": "JWT"}
        assert token.claim("uid") == 5
        assert token.claim("iss") == "dispatchkit-tests"
        assert token.has_claim("exp")
        assert token.signature

    @pytest.mark.parametrize("raw", ["", "abc", "a.b", "a.b.c.d", "!!!.###.$$$"])
    def test_malformed_returns_none(self, raw):
        assert Token.parse(raw) is None

    def test_non_object_payload_returns_none(self):
        raw = f"{b64(b'{}')}.{b64(b'[1, 2]')}.{b64(b'sig')}"
        assert Token.parse(raw) is None

    def test_typed_claims(self):
        token = Token.parse(sign_token({"n": "12", "f": "1.5", "b": "yes", "l": [1, 2]}, JwtSettings(secret="k")))

        assert token.int_claim("n") == 12
        assert token.int_claim("missing") == INT_UNSET
        assert token.float_claim("f") == 1.5
        assert token.bool_claim("b") is True
        assert token.str_claim("n") == "12"
        assert token.list_claim("l") == [1, 2]
        assert token.list_claim("missing") == []


# ============================================================================
# Signing & verification
# ============================================================================


class TestSignToken:
    def test_fills_issuer_and_expiry(self):
        before = int(time.time())
        token = Token.parse(sign_token({}, JWT_SETTINGS))
        assert token.claim("iss") == "dispatchkit-tests"
        assert before + 3600 <= token.claim("exp") <= int(time.time()) + 3600

    def test_explicit_claims_are_kept(self):
        token = Token.parse(sign_token({"iss": "other", "exp": 10}, JWT_SETTINGS))
        assert token.claim("iss") == "other"
        assert token.claim("exp") == 10

    def test_no_ttl_means_no_expiry(self):
        token = Token.parse(sign_token({}, JwtSettings(issuer="i", secret="s")))
        assert not token.has_claim("exp")

    def test_rejects_asymmetric_algorithms(self):
        with pytest.raises(ValueError):
            sign_token({}, JwtSettings(secret="s", algorithm="RS256"))


class TestHmacTokenVerifier:
    verifier = HmacTokenVerifier()

    def verify(self, raw, settings=JWT_SETTINGS):
        return self.verifier.verify(Token.parse(raw), settings)

    def test_valid(self):
        assert self.verify(sign_token({"uid": 1}, JWT_SETTINGS)) == VerifyResult.OK

    @pytest.mark.parametrize("algorithm", ["HS384", "HS512"])
    def test_other_hmac_algorithms(self, algorithm):
        settings = JwtSettings(issuer="i", secret="s", algorithm=algorithm)
        assert self.verify(sign_token({}, settings), settings) == VerifyResult.OK

    def test_algorithm_mismatch(self):
        other = JwtSettings(issuer=JWT_SETTINGS.issuer, secret=JWT_SETTINGS.secret, algorithm="HS512")
        assert self.verify(sign_token({}, other)) == VerifyResult.INVALID

    def test_tampered_payload(self):
        header, _, signature = sign_token({"uid": 1}, JWT_SETTINGS).split(".")
        forged = b64(json.dumps({"uid": 2, "iss": JWT_SETTINGS.issuer}).encode())
        assert self.verify(f"{header}.{forged}.{signature}") == VerifyResult.INVALID

    def test_expired(self):
        assert self.verify(sign_token({"exp": int(time.time()) - 5}, JWT_SETTINGS)) == VerifyResult.EXPIRED

    def test_leeway_tolerates_skew(self):
        settings = JwtSettings(issuer="i", secret="s", leeway=60)
        assert self.verify(sign_token({"exp": int(time.time()) - 5}, settings), settings) == VerifyResult.OK

    def test_not_yet_valid(self):
        raw = sign_token({"nbf": int(time.time()) + 600}, JWT_SETTINGS)
        assert self.verify(raw) == VerifyResult.INVALID

    def test_non_numeric_expiry(self):
        assert self.verify(sign_token({"exp": "soon"}, JWT_SETTINGS)) == VerifyResult.INVALID

    def test_rs256(self):
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        public_pem = private_key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode()
        settings = JwtSettings(issuer="i", secret=public_pem, algorithm="RS256")

        assert self.verify(rs256_token({"iss": "i"}, private_key), settings) == VerifyResult.OK
        assert self.verify(rs256_token({"iss": "x"}, private_key), settings) == VerifyResult.INVALID

    def test_rs256_with_bad_key_material(self):
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        settings = JwtSettings(issuer="i", secret="not a pem", algorithm="RS256")
        assert self.verify(rs256_token({"iss": "i"}, private_key), settings) == VerifyResult.INVALID


class TestJwtSettings:
    def test_from_dict(self):
        settings = JwtSettings.from_dict({"iss": "acme", "secret": 123, "algorithm": "hs512", "ttl": "60"})
        assert settings == JwtSettings(issuer="acme", secret="123", algorithm="HS512", leeway=0, ttl=60)


class TestCorsSettings:
    def test_defaults_allow_any_origin(self):
        headers = CorsSettings().headers("https://a.example")

        assert headers["Access-Control-Allow-Origin"] == "*"
        assert headers["Access-Control-Allow-Methods"] == "GET, POST, PUT, PATCH, DELETE, OPTIONS"
        assert "Access-Control-Max-Age" not in headers
        assert "Access-Control-Allow-Credentials" not in headers

    def test_listed_origin_is_echoed(self):
        settings = CorsSettings(allowed_origins=["https://a.example", "https://b.example"])

        assert settings.headers("https://b.example")["Access-Control-Allow-Origin"] == "https://b.example"
        assert settings.headers("https://b.example")["Vary"] == "Origin"
        assert "Access-Control-Allow-Origin" not in settings.headers("https://evil.example")
        assert "Access-Control-Allow-Origin" not in settings.headers("")

    def test_credentials_never_use_wildcard(self):
        headers = CorsSettings(allow_credentials=True).headers("https://a.example")
        assert headers["Access-Control-Allow-Origin"] == "https://a.example"
        assert headers["Access-Control-Allow-Credentials"] == "true"

    def test_from_dict_key_styles(self):
        settings = CorsSettings.from_dict({
            "allowed-origins": "https://a.example, https://b.example",
            "allowedHeaders": ["X-Token"],
            "allow_credentials": True,
            "maxAge": "120",
        })
        assert settings.allowed_origins == ["https://a.example", "https://b.example"]
        assert settings.allowed_headers == ["X-Token"]
        assert settings.allow_credentials is True
        assert settings.max_age == 120

    @pytest.mark.parametrize("data", [
        {"allowed_origins": [1]},
        {"allow_credentials": "yes"},
        {"max_age": -5},
        {"origins": ["*"]},
    ])
    def test_from_dict_rejects(self, data):
        with pytest.raises(ValueError):
            CorsSettings.from_dict(data)
