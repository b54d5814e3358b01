"""Security module — consent ledger, audit trail, rate limiting."""

from src.security.consent import consent_ledger
from src.security.rate_limiter import rate_limiter

__all__ = ["consent_ledger", "rate_limiter"]
