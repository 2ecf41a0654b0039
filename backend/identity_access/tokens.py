"""
Access-token verification for the identity_access bounded context.

Why: Keep cryptographic validation of bearer tokens outside the web adapter so
it can be unit tested independently of FastAPI.

Security: Tokens are signed with a shared secret (HS* family). Only the
configured algorithms are accepted, issuer and audience are checked when
configured, and temporal claims are validated with a small clock skew.
"""
from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from jose import jwt
from jose.exceptions import JOSEError

from .domain import ALLOWED_ROLES


class TokenVerificationError(Exception):
    """Raised when the access token fails verification."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


MAX_CLOCK_SKEW_SECONDS = 5  # Allow minimal skew between servers
_SUPPORTED_ALGORITHMS = frozenset({"HS256", "HS384", "HS512"})


@dataclass(frozen=True)
class TokenConfig:
    secret: str
    algorithms: Tuple[str, ...] = ("HS256",)
    issuer: Optional[str] = None
    audience: Optional[str] = None

    @classmethod
    def from_env(cls) -> "TokenConfig":
        raw_algs = os.getenv("AUTH_JWT_ALGORITHMS", "HS256")
        algorithms = tuple(
            alg for alg in (a.strip().upper() for a in raw_algs.split(",")) if alg in _SUPPORTED_ALGORITHMS
        )
        return cls(
            secret=os.getenv("AUTH_JWT_SECRET", ""),
            algorithms=algorithms or ("HS256",),
            issuer=(os.getenv("AUTH_JWT_ISSUER") or None),
            audience=(os.getenv("AUTH_JWT_AUDIENCE") or None),
        )


def verify_access_token(token: str, cfg: TokenConfig) -> Dict[str, object]:
    """Validate a bearer token and return its claims.

    Raises
    ------
    TokenVerificationError:
        When the secret is missing or the token is invalid (signature,
        algorithm, issuer, audience, expiry).
    """
    if not cfg.secret:
        raise TokenVerificationError("verifier_not_configured")
    if not token:
        raise TokenVerificationError("missing_token")
    try:
        header = jwt.get_unverified_header(token)
    except JOSEError as exc:
        raise TokenVerificationError("invalid_token") from exc
    if header.get("alg") not in cfg.algorithms:
        raise TokenVerificationError("invalid_token")

    try:
        claims = jwt.decode(
            token,
            cfg.secret,
            algorithms=list(cfg.algorithms),
            audience=cfg.audience,
            issuer=cfg.issuer,
            options={
                "verify_signature": True,
                "verify_aud": cfg.audience is not None,
                "verify_iss": cfg.issuer is not None,
                "verify_exp": False,
                "verify_iat": False,
                "verify_nbf": False,
            },
        )
    except JOSEError as exc:
        raise TokenVerificationError("invalid_token") from exc

    _validate_temporal_claims(claims)
    return claims


def roles_from_claims(claims: Dict[str, object]) -> List[str]:
    """Return known roles from `roles` (list) or `role` (string), in claim order."""
    raw = claims.get("roles")
    if raw is None:
        raw = claims.get("role")
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list):
        return []
    roles: List[str] = []
    for r in raw:
        if isinstance(r, str) and r in ALLOWED_ROLES and r not in roles:
            roles.append(r)
    return roles


def subject_from_claims(claims: Dict[str, object]) -> Optional[str]:
    sub = claims.get("sub") or claims.get("id")
    return str(sub) if sub else None


def _validate_temporal_claims(claims: Dict[str, object]) -> None:
    now = time.time()
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        raise TokenVerificationError("invalid_token")
    if exp + MAX_CLOCK_SKEW_SECONDS < now:
        raise TokenVerificationError("token_expired")

    iat = claims.get("iat")
    if isinstance(iat, (int, float)):
        if iat - MAX_CLOCK_SKEW_SECONDS > now:
            raise TokenVerificationError("invalid_token")

    nbf = claims.get("nbf")
    if isinstance(nbf, (int, float)) and nbf - MAX_CLOCK_SKEW_SECONDS > now:
        raise TokenVerificationError("invalid_token")


__all__ = [
    "TokenConfig",
    "TokenVerificationError",
    "verify_access_token",
    "roles_from_claims",
    "subject_from_claims",
    "MAX_CLOCK_SKEW_SECONDS",
]
