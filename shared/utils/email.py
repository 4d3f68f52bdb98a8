"""Email helpers shared by purchase and waitlist flows"""
from typing import Optional
from email_validator import validate_email, EmailNotValidError


def normalize_email(email: Optional[str]) -> str:
    """Trim and lower-case; None becomes an empty string"""
    return (email or "").strip().lower()


def is_valid_email(email: Optional[str]) -> bool:
    """Syntactic check only, no DNS lookup"""
    if not email:
        return False
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True
