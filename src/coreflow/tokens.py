"""Unguessable tokens for candidate-facing offer links."""

from __future__ import annotations

import secrets


def generate_secure_token(length: int = 32) -> str:
    """Return `length` random bytes as hex (64 chars for the default 256 bits)."""
    return secrets.token_hex(length)
