from __future__ import annotations

from typing import List


def check_password_policy(password: str, *, min_length: int, require_classes: int) -> List[str]:
    errors: List[str] = []
    if password is None:
        return ["password is required"]
    if len(password) < min_length:
        errors.append(f"password must be at least {min_length} characters long")

    classes = sum(
        (
            any(ch.islower() for ch in password),
            any(ch.isupper() for ch in password),
            any(ch.isdigit() for ch in password),
            any(not ch.isalnum() for ch in password),
        )
    )
    if classes < require_classes:
        errors.append(
            f"password must mix at least {require_classes} of: lowercase, uppercase, digits, symbols"
        )
    return errors
