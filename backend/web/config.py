"""
Configuration and startup security checks for StudyMate.

Why: Course files are served to students; a deployment with a guessable token
secret or an unencrypted database link must not come up by accident. Local
development stays permissive.

Permissions: The caller needs no special privileges. The function only reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os

_PLACEHOLDER_PREFIXES = ("CHANGE_ME", "DUMMY", "TEST_ONLY")


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def _is_placeholder(value: str) -> bool:
    upper = (value or "").strip().upper()
    return not upper or upper.startswith(_PLACEHOLDER_PREFIXES)


def current_environment() -> str:
    return (os.getenv("STUDYMATE_ENV", "dev") or "dev").strip().lower()


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Checks (prod/stage only):
    - AUTH_JWT_SECRET must be set, not a placeholder, and at least 32 chars.
    - SUPABASE_SERVICE_ROLE_KEY must be set and not a placeholder when
      SUPABASE_URL is configured.
    - FILES_DATABASE_URL / DATABASE_URL must not disable TLS.
    - SUPABASE_URL must use https.
    """
    if not _is_prod_like(current_environment()):
        return  # dev/test remain permissive

    secret = os.getenv("AUTH_JWT_SECRET", "")
    if _is_placeholder(secret) or len(secret.strip()) < 32:
        raise SystemExit(
            "Refusing to start: AUTH_JWT_SECRET is unset, a placeholder or shorter than 32 characters in production."
        )

    supabase_url = (os.getenv("SUPABASE_URL", "") or "").strip()
    if supabase_url:
        if _is_placeholder(os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")):
            raise SystemExit(
                "Refusing to start: SUPABASE_SERVICE_ROLE_KEY is unset or a placeholder in production."
            )
        if supabase_url.lower().startswith("http://"):
            raise SystemExit("Refusing to start: SUPABASE_URL must use https in production (got http).")

    for key in ("FILES_DATABASE_URL", "DATABASE_URL"):
        if "sslmode=disable" in (os.getenv(key, "") or ""):
            raise SystemExit(
                f"Refusing to start: {key} contains sslmode=disable in production. Use sslmode=require or verify TLS."
            )


__all__ = ["ensure_secure_config_on_startup", "current_environment"]
