"""Password hashing for protected files."""

from __future__ import annotations

from werkzeug.security import check_password_hash, generate_password_hash

HASH_METHOD = "pbkdf2:sha256"


def hash_password(password: str) -> str:
    """Hash a file password (salted, ``pbkdf2:sha256:<iterations>$<salt>$<hash>``)."""
    return generate_password_hash(password, method=HASH_METHOD)


def verify_password(password: str | None, encoded: str) -> bool:
    """Check a supplied password against a stored hash in constant time."""
    if password is None:
        return False
    try:
        return check_password_hash(encoded, password)
    except ValueError:
        # Unknown hash method
        return False
