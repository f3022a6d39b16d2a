"""Contains all the logic for validating registration and credential details"""

import re


USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 30
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_identifier(value: str) -> str:
    """Usernames and emails are stored and compared trimmed and lower-cased"""
    return value.strip().lower()


def is_username_valid(username: str) -> tuple[bool, str]:
    """Check `username` against the username rules

    Args:
        username (str): Username to validate

    Returns:
        tuple[bool, str]: A tuple containing a boolean indicating validity and a description
    """
    username = username.strip()

    if len(username) < USERNAME_MIN_LENGTH:
        return False, f"Username must be at least {USERNAME_MIN_LENGTH} characters long"

    if len(username) > USERNAME_MAX_LENGTH:
        return False, f"Username must be at most {USERNAME_MAX_LENGTH} characters long"

    if not USERNAME_PATTERN.match(username):
        return False, "Username can only contain letters, numbers, and underscores"

    return True, "Valid username"


def is_email_valid(email: str) -> tuple[bool, str]:
    """Check that `email` looks like an address. Deliverability is not checked.

    Returns:
        tuple[bool, str]: A tuple containing a boolean indicating validity and a description
    """
    if not EMAIL_PATTERN.match(email.strip()):
        return False, "Please provide a valid email address"

    return True, "Valid email"


def is_password_strong(password: str) -> tuple[bool, str]:
    """Check `password` against the length rules

    Returns:
        tuple[bool, str]: A tuple containing a boolean indicating validity and a description
    """
    if len(password) < PASSWORD_MIN_LENGTH:
        return False, f"Password must be at least {PASSWORD_MIN_LENGTH} characters long"

    if len(password) > PASSWORD_MAX_LENGTH:
        return False, f"Password must be at most {PASSWORD_MAX_LENGTH} characters long"

    return True, "Valid password"
