"""
Rate limiting detection helpers.

Explorer APIs and JSON-RPC providers report throttling in free text, so
detection is a case-insensitive match over the error message. A bare status
code only counts when it reads as a status, never as part of a hash or a
block number.
"""

import re
from typing import Union

RATE_LIMIT_INDICATORS = [
    "rate limit",
    "too many requests",
    "throttle",
    "max calls per sec",
    "exceeded the rate",
]

RATE_LIMIT_STATUS = re.compile(r"\b(?:status|http|code|returned)\W{0,3}429\b", re.IGNORECASE)


def is_rate_limit_error(error: Union[BaseException, str]) -> bool:
    """
    Check if an error indicates rate limiting.

    Args:
        error: The exception or error message to check

    Returns:
        True if this appears to be a rate limiting error
    """
    error_text = str(error)
    error_lower = error_text.lower()
    for indicator in RATE_LIMIT_INDICATORS:
        if indicator in error_lower:
            return True
    return bool(RATE_LIMIT_STATUS.search(error_text))
