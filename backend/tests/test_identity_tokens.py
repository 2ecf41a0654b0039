"""
Access-token verification.

Expected:
  - Valid HS256 tokens yield claims; subject and roles are extracted.
  - Wrong secret, disallowed algorithm, expiry, future iat/nbf, and issuer or
    audience mismatches raise TokenVerificationError.
  - Without a configured secret nothing verifies.
"""
from __future__ import annotations

import time

import pytest
from jose import jwt

from backend.identity_access.tokens import (
    TokenConfig,
    TokenVerificationError,
    roles_from_claims,
    subject_from_claims,
    verify_access_token,
)

SECRET = "unit-test-secret-unit-test-secret-0000"


def _token(secret: str = SECRET, algorithm: str = "HS256", **claims) -> str:
    now = int(time.time())
    base = {"sub": "user-42", "iat": now, "exp": now + 120}
    base.update(claims)
    return jwt.encode(base, secret, algorithm=algorithm)


def test_valid_token_returns_claims():
    claims = verify_access_token(_token(roles=["instructor"]), TokenConfig(secret=SECRET))
    assert subject_from_claims(claims) == "user-42"
    assert roles_from_claims(claims) == ["instructor"]


@pytest.mark.parametrize(
    "token",
    [
        _token(secret="wrong-secret-wrong-secret-wrong-0000"),
        _token(algorithm="HS512"),
        _token(exp=int(time.time()) - 60),
        _token(iat=int(time.time()) + 600),
        _token(nbf=int(time.time()) + 600),
        "garbage",
    ],
)
def test_invalid_tokens_are_rejected(token):
    with pytest.raises(TokenVerificationError):
        verify_access_token(token, TokenConfig(secret=SECRET))


def test_missing_exp_is_rejected():
    token = jwt.encode({"sub": "user-42"}, SECRET, algorithm="HS256")
    with pytest.raises(TokenVerificationError, match="invalid_token"):
        verify_access_token(token, TokenConfig(secret=SECRET))


def test_issuer_and_audience_are_enforced_when_configured():
    cfg = TokenConfig(secret=SECRET, issuer="https://auth.studymate.test", audience="studymate-api")
    good = _token(iss="https://auth.studymate.test", aud="studymate-api")
    assert verify_access_token(good, cfg)["sub"] == "user-42"
    with pytest.raises(TokenVerificationError):
        verify_access_token(_token(iss="https://evil.test", aud="studymate-api"), cfg)
    with pytest.raises(TokenVerificationError):
        verify_access_token(_token(iss="https://auth.studymate.test", aud="other"), cfg)


def test_unconfigured_secret_never_verifies():
    with pytest.raises(TokenVerificationError, match="verifier_not_configured"):
        verify_access_token(_token(), TokenConfig(secret=""))


def test_role_claims_are_filtered_to_known_roles():
    assert roles_from_claims({"role": "student"}) == ["student"]
    assert roles_from_claims({"roles": ["admin", "root", "admin", 3]}) == ["admin"]
    assert roles_from_claims({"roles": "instructor"}) == ["instructor"]
    assert roles_from_claims({}) == []
    assert subject_from_claims({"id": 7}) == "7"
    assert subject_from_claims({}) is None


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("AUTH_JWT_SECRET", "s" * 40)
    monkeypatch.setenv("AUTH_JWT_ALGORITHMS", "hs384, RS256")
    monkeypatch.setenv("AUTH_JWT_ISSUER", "iss")
    cfg = TokenConfig.from_env()
    assert cfg.algorithms == ("HS384",)
    assert cfg.issuer == "iss"
    assert cfg.audience is None
