"""Contains all models commonly used across different modules."""
from enum import Enum


class Plan(str, Enum):
    """Enumeration of subscription tiers a profile can be on."""
    FREE = "free"
    PREMIUM = "premium"
    PRO = "pro"
    ENTERPRISE = "enterprise"
    ADMIN = "admin"
    STAFF = "staff"


ADMIN_PLANS = frozenset({Plan.ADMIN, Plan.STAFF})

PREMIUM_PLANS = frozenset({Plan.PREMIUM, Plan.PRO, Plan.ENTERPRISE, Plan.ADMIN, Plan.STAFF})


class ContentType(str, Enum):
    """Body formats supported by the email service."""
    PLAIN = "plain"
    HTML = "html"
