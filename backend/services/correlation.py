"""
Legal Review Hub - Correlation IDs

Each workflow action tags its log lines with a correlation id of the form
``{prefix}-{epoch_ms}-{6 random base36 chars}``.
"""

import secrets
import string
import time

_ALPHABET = string.digits + string.ascii_lowercase


def generate_correlation_id(prefix: str) -> str:
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(6))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"
