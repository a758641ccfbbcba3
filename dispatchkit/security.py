"""
Bearer token parsing and verification.

``Token`` is a parsed (not verified) compact JWT. ``HmacTokenVerifier``
checks the signature, issuer and expiry against ``JwtSettings``.
"""

from __future__ import annotations

import base64
import json
import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from . import casting

logger = logging.getLogger("dispatchkit.security")


def _b64_decode(data: str) -> bytes:
    """URL-safe base64 decode."""
    padding_len = 4 - (len(data) % 4)
    if padding_len != 4:
        data += "=" * padding_len
    return base64.urlsafe_b64decode(data)


def _b64_encode(data: bytes) -> str:
    """URL-safe base64 encode."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _b64_encode_json(data: dict) -> str:
    return _b64_encode(json.dumps(data, separators=(",", ":")).encode())


# ============================================================================
# Token
# ============================================================================

@dataclass
class Token:
    """
    Parsed compact JWT.

    Attributes:
        raw: Original token string
        header: Decoded JOSE header
        claims: Decoded payload
        signature: Raw signature bytes
    """
    raw: str
    header: dict[str, Any] = field(default_factory=dict)
    claims: dict[str, Any] = field(default_factory=dict)
    signature: bytes = b""

    @classmethod
    def parse(cls, raw: str) -> Optional["Token"]:
        """Parse a compact JWT; returns None when malformed."""
        parts = raw.strip().split(".")
        if len(parts) != 3:
            return None
        try:
            header = json.loads(_b64_decode(parts[0]))
            claims = json.loads(_b64_decode(parts[1]))
            signature = _b64_decode(parts[2])
        except (ValueError, TypeError):
            return None
        if not isinstance(header, dict) or not isinstance(claims, dict):
            return None
        return cls(raw=raw.strip(), header=header, claims=claims, signature=signature)

    @property
    def signing_input(self) -> bytes:
        header_b64, payload_b64, _ = self.raw.split(".")
        return f"{header_b64}.{payload_b64}".encode()

    def has_claim(self, name: str) -> bool:
        return name in self.claims

    def claim(self, name: str, default: Any = None) -> Any:
        return self.claims.get(name, default)

    def int_claim(self, name: str, default: int = casting.INT_UNSET) -> int:
        return casting.to_int(self.claims.get(name), default)

    def float_claim(self, name: str, default: float = casting.FLOAT_UNSET) -> float:
        return casting.to_float(self.claims.get(name), default)

    def bool_claim(self, name: str, default: bool = False) -> bool:
        return casting.to_bool(self.claims.get(name), default)

    def str_claim(self, name: str, default: str = "") -> str:
        return casting.to_str(self.claims.get(name), default)

    def list_claim(self, name: str) -> list:
        return casting.to_list(self.claims.get(name))


# ============================================================================
# Settings & verification
# ============================================================================

@dataclass
class JwtSettings:
    """
    Token verification settings, registered under a key referenced by
    ``@JwtAuth(key)``.

    Attributes:
        issuer: Expected ``iss`` claim; empty disables verification
        secret: HMAC secret (HS*) or PEM public key (RS256)
        algorithm: HS256, HS384, HS512 or RS256
        leeway: Clock skew tolerated on ``exp``/``nbf``, in seconds
        ttl: Lifetime of tokens issued with these settings, in seconds
    """
    issuer: str = ""
    secret: str = ""
    algorithm: str = "HS256"
    leeway: int = 0
    ttl: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JwtSettings":
        return cls(
            issuer=str(data.get("issuer", data.get("iss", ""))),
            secret=str(data.get("secret", "")),
            algorithm=str(data.get("algorithm", "HS256")).upper(),
            leeway=int(data.get("leeway", 0)),
            ttl=int(data.get("ttl", 0)),
        )


@dataclass
class CorsSettings:
    """
    Cross-origin settings applied to every response when enabled.

    An origin list containing ``"*"`` allows any origin; otherwise the
    request's ``Origin`` is echoed back only when it is listed.
    """
    allowed_origins: list[str] = field(default_factory=lambda: ["*"])
    allowed_headers: list[str] = field(default_factory=lambda: [
        "Content-Type", "Content-Length", "Authorization", "Accept", "Accept-Encoding", "X-Requested-With",
    ])
    allowed_methods: list[str] = field(default_factory=lambda: ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"])
    exposed_headers: list[str] = field(default_factory=lambda: [
        "Content-Length", "Cache-Control", "Content-Language", "Content-Type",
    ])
    allow_credentials: bool = False
    max_age: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CorsSettings":
        """
        Build settings from plain data; keys may use snake_case,
        kebab-case or camelCase.

        Raises:
            ValueError: unknown keys or values of the wrong type
        """
        settings = cls()
        for key, value in data.items():
            name = _snake(key)
            if name in ("allowed_origins", "allowed_headers", "allowed_methods", "exposed_headers"):
                if isinstance(value, str):
                    value = [v.strip() for v in value.split(",") if v.strip()]
                if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
                    raise ValueError(f"{key} must be a list of strings")
                setattr(settings, name, list(value))
            elif name == "allow_credentials":
                if not isinstance(value, bool):
                    raise ValueError(f"{key} must be a boolean")
                settings.allow_credentials = value
            elif name == "max_age":
                settings.max_age = casting.to_int(value, 0)
                if settings.max_age < 0:
                    raise ValueError(f"{key} must not be negative")
            else:
                raise ValueError(f"unknown CORS setting {key!r}")
        return settings

    def headers(self, origin: str = "") -> dict[str, str]:
        """``Access-Control-*`` headers for a request from ``origin``."""
        headers: dict[str, str] = {}
        if "*" in self.allowed_origins and not self.allow_credentials:
            headers["Access-Control-Allow-Origin"] = "*"
        elif origin and ("*" in self.allowed_origins or origin in self.allowed_origins):
            headers["Access-Control-Allow-Origin"] = origin
            headers["Vary"] = "Origin"

        if self.allowed_methods:
            headers["Access-Control-Allow-Methods"] = ", ".join(self.allowed_methods)
        if self.allowed_headers:
            headers["Access-Control-Allow-Headers"] = ", ".join(self.allowed_headers)
        if self.exposed_headers:
            headers["Access-Control-Expose-Headers"] = ", ".join(self.exposed_headers)
        if self.max_age > 0:
            headers["Access-Control-Max-Age"] = str(self.max_age)
        if self.allow_credentials:
            headers["Access-Control-Allow-Credentials"] = "true"
        return headers


def _snake(key: str) -> str:
    key = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", key)
    return key.replace("-", "_").lower()


class VerifyResult(str, Enum):
    OK = "ok"
    INVALID = "invalid"
    EXPIRED = "expired"


_HASHES = {
    "HS256": hashes.SHA256,
    "HS384": hashes.SHA384,
    "HS512": hashes.SHA512,
}


class HmacTokenVerifier:
    """
    Verifies token signature, issuer and expiry.

    HS* algorithms use the shared secret; RS256 treats ``secret`` as a
    PEM-encoded public key.
    """

    def verify(self, token: Token, settings: JwtSettings) -> VerifyResult:
        alg = str(token.header.get("alg", "")).upper()
        if alg != settings.algorithm.upper():
            return VerifyResult.INVALID

        if not self._verify_signature(token, settings):
            return VerifyResult.INVALID

        if settings.issuer and token.claims.get("iss") != settings.issuer:
            return VerifyResult.INVALID

        now = int(time.time())
        nbf = token.claims.get("nbf")
        if isinstance(nbf, (int, float)) and nbf > now + settings.leeway:
            return VerifyResult.INVALID

        exp = token.claims.get("exp")
        if exp is not None:
            if not isinstance(exp, (int, float)):
                return VerifyResult.INVALID
            if exp + settings.leeway < now:
                return VerifyResult.EXPIRED

        return VerifyResult.OK

    def _verify_signature(self, token: Token, settings: JwtSettings) -> bool:
        algorithm = settings.algorithm.upper()
        try:
            if algorithm in _HASHES:
                h = hmac.HMAC(settings.secret.encode(), _HASHES[algorithm]())
                h.update(token.signing_input)
                h.verify(token.signature)
                return True
            if algorithm == "RS256":
                public_key = serialization.load_pem_public_key(settings.secret.encode())
                public_key.verify(token.signature, token.signing_input, padding.PKCS1v15(), hashes.SHA256())
                return True
        except InvalidSignature:
            return False
        except ValueError as e:
            logger.warning("Cannot verify token with %s settings: %s", algorithm, e)
            return False

        logger.warning("Unsupported token algorithm: %s", algorithm)
        return False


def sign_token(claims: dict[str, Any], settings: JwtSettings) -> str:
    """
    Issue an HS* token for ``claims``.

    ``iss`` and ``exp`` are filled from the settings when absent.
    """
    algorithm = settings.algorithm.upper()
    if algorithm not in _HASHES:
        raise ValueError(f"Unsupported signing algorithm: {algorithm}")

    payload = dict(claims)
    if settings.issuer:
        payload.setdefault("iss", settings.issuer)
    if settings.ttl > 0:
        now = int(time.time())
        payload.setdefault("iat", now)
        payload.setdefault("exp", now + settings.ttl)

    header_b64 = _b64_encode_json({"alg": algorithm, "typ": "JWT"})
    payload_b64 = _b64_encode_json(payload)

    h = hmac.HMAC(settings.secret.encode(), _HASHES[algorithm]())
    h.update(f"{header_b64}.{payload_b64}".encode())
    return f"{header_b64}.{payload_b64}.{_b64_encode(h.finalize())}"


__all__ = [
    "Token",
    "JwtSettings",
    "CorsSettings",
    "VerifyResult",
    "HmacTokenVerifier",
    "sign_token",
]
