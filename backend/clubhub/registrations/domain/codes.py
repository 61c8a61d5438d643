"""Check-in code generation."""

from __future__ import annotations

import secrets
import string

_ALPHABET = string.ascii_uppercase + string.digits
_AMBIGUOUS = set("O0I1")
CODE_ALPHABET = "".join(ch for ch in _ALPHABET if ch not in _AMBIGUOUS)


def generate_check_in_code(length: int = 6) -> str:
	"""Return a short random code typed or scanned at the door.

	Uniqueness is enforced by the ``check_in_code`` unique index; callers
	regenerate on collision.
	"""
	if length < 4:
		raise ValueError("check-in codes shorter than 4 characters are too easy to guess")
	return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_check_in_code(raw: str) -> str:
	return raw.strip().upper()
