"""Generated usernames, passwords and contact emails for new accounts."""

import secrets
import string
from typing import Optional

USERNAME_LENGTH = 14
PASSWORD_LENGTH = 12

_USERNAME_FIRST = string.ascii_lowercase
_USERNAME_REST = string.ascii_lowercase + string.digits
# No quotes or backslashes: passwords are passed to remote shells
_PASSWORD_SPECIALS = "!@#$%^&*"
_PASSWORD_CLASSES = (
    string.ascii_lowercase,
    string.ascii_uppercase,
    string.digits,
    _PASSWORD_SPECIALS,
)


def generate_username(length: int = USERNAME_LENGTH) -> str:
    """Random panel username. Always starts with a letter."""
    if length < 1:
        raise ValueError("length must be >= 1")
    first = secrets.choice(_USERNAME_FIRST)
    rest = "".join(secrets.choice(_USERNAME_REST) for _ in range(length - 1))
    return first + rest


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    """Random password with at least one lower, upper, digit and special character."""
    if length < len(_PASSWORD_CLASSES):
        raise ValueError(f"length must be >= {len(_PASSWORD_CLASSES)}")
    chars = [secrets.choice(cls) for cls in _PASSWORD_CLASSES]
    pool = "".join(_PASSWORD_CLASSES)
    chars.extend(secrets.choice(pool) for _ in range(length - len(chars)))
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def contact_email(domain: str, template: Optional[str] = None) -> str:
    """Contact email for an account; `{domain}` in the template is substituted."""
    if not template:
        return f"admin@{domain}"
    return template.replace("{domain}", domain)


def random_mailbox(domain: str, length: int = 10) -> str:
    """Throwaway address on `domain`, used for temporary login users."""
    local = "".join(secrets.choice(_USERNAME_REST) for _ in range(length))
    return f"{local}@{domain}"
