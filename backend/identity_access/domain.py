"""
Identity domain constants.

Why:
- Centralize allowed roles to avoid drift between the token verifier and the
  web layer.
"""

from __future__ import annotations

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({"student", "instructor", "admin"})

# Roles that may change course folders and files.
WRITE_ROLES = frozenset({"instructor"})

__all__ = ["ALLOWED_ROLES", "WRITE_ROLES"]
