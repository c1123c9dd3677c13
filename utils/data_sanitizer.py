"""
Data Sanitization Module
Masks credentials and one-time codes before payloads reach the logs
"""

import json
import logging
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"


class DataSanitizer:
    """Recursive masking of sensitive fields in API payloads and headers"""

    # Compared against the lower-cased key with '_' and '-' removed
    SENSITIVE_FIELDS = {
        "password",
        "token",
        "accesstoken",
        "refreshtoken",
        "secret",
        "key",
        "otp",
        "code",
        "authorization",
        "quotesignature",
    }

    @staticmethod
    def _normalize_key(key: Any) -> str:
        return str(key).lower().replace("_", "").replace("-", "")

    @classmethod
    def is_sensitive_key(cls, key: Any) -> bool:
        return cls._normalize_key(key) in cls.SENSITIVE_FIELDS

    @classmethod
    def mask_value(cls, key: Any, value: Any) -> Any:
        if cls._normalize_key(key) == "authorization" and isinstance(value, str):
            scheme = value.split(" ", 1)[0] if " " in value else ""
            return f"{scheme} {REDACTED}".strip()
        return REDACTED

    @classmethod
    def sanitize_dict(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Sanitize dictionary by masking sensitive fields

        Args:
            data: Dictionary to sanitize

        Returns:
            A new dictionary; the input is never mutated
        """
        sanitized = {}
        for key, value in data.items():
            if cls.is_sensitive_key(key):
                sanitized[key] = cls.mask_value(key, value)
            elif isinstance(value, dict):
                sanitized[key] = cls.sanitize_dict(value)
            elif isinstance(value, list):
                sanitized[key] = cls.sanitize_list(value)
            else:
                sanitized[key] = value
        return sanitized

    @classmethod
    def sanitize_list(cls, data: List[Any]) -> List[Any]:
        return [cls.mask_sensitive_data(item) for item in data]

    @classmethod
    def mask_sensitive_data(cls, data: Any) -> Any:
        """Mask any structure; scalars pass through unchanged"""
        if isinstance(data, dict):
            return cls.sanitize_dict(data)
        if isinstance(data, list):
            return cls.sanitize_list(data)
        return data


def mask_token(token: str, visible: int = 10) -> str:
    """Short prefix of a bearer token, enough to correlate log lines"""
    if not token:
        return ""
    return f"{token[:visible]}..."


def sanitize_for_log(data: Any, max_length: int = 1000) -> str:
    """Masked, JSON-encoded and length-capped representation for log lines"""
    try:
        rendered = json.dumps(DataSanitizer.mask_sensitive_data(data), default=str)
    except (TypeError, ValueError):
        rendered = str(data)
    if len(rendered) > max_length:
        return f"{rendered[:max_length]}... (truncated)"
    return rendered
