"""
Security utilities for handling sensitive data.

Masks API keys before they reach log files.
"""


def mask_api_key(key: str) -> str:
    """
    Mask API key for safe logging.

    Shows first 8 and last 4 characters, masks the rest.

    Examples:
        >>> mask_api_key("sk-1234567890abcdefghijklmnopqrstuvwxyz")
        'sk-12345...wxyz'
        >>> mask_api_key("short")
        '***'
        >>> mask_api_key("")
        'None'
    """
    if not key:
        return "None"

    if len(key) <= 12:
        return "***"

    return f"{key[:8]}...{key[-4:]}"
