"""Security module: token encryption, rate limiting, audit trail."""

from cvreview.security.encryption import token_encryptor
from cvreview.security.rate_limiter import rate_limiter

__all__ = ["token_encryptor", "rate_limiter"]
