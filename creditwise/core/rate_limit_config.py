"""
Rate limiting configuration for the CreditWise chat API and edge proxy
"""

from typing import Callable
from fastapi import Request
from slowapi.util import get_remote_address


def get_real_ip(request: Request) -> str:
    """
    Get the real IP address, considering proxy headers.
    The API usually runs behind a load balancer.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # X-Forwarded-For can contain multiple IPs, take the first
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return get_remote_address(request)


def create_custom_key_func(prefix: str = "") -> Callable:
    """
    Key function that separates limits per app (chat API vs proxy) and per
    guest id, so guests behind one NAT do not share a bucket.
    """
    def key_func(request: Request) -> str:
        ip = get_real_ip(request)
        guest_id = request.headers.get("X-Guest-Id")
        if guest_id:
            return f"{prefix}:{ip}:{guest_id}"
        return f"{prefix}:{ip}"

    return key_func


RATE_LIMIT_TIERS = {
    "default": {
        "chat_init": "20/minute",       # Session loads and new sessions
        "chat_message": "30/minute",    # Messages and actions
        "chat_document": "10/minute",   # Document analysis (expensive)
        "credits": "60/minute",
        "proxy": "60/minute",
        "global": "200/minute"
    },
    "premium": {  # Future: higher limits for paying users
        "chat_init": "40/minute",
        "chat_message": "60/minute",
        "chat_document": "20/minute",
        "credits": "120/minute",
        "proxy": "120/minute",
        "global": "400/minute"
    }
}

RATE_LIMIT_MESSAGES = {
    "default": "Слишком много запросов. Подождите немного и попробуйте снова.",
    "chat_message": "Слишком много сообщений. Пожалуйста, помедленнее.",
    "chat_document": "Анализ документов ограничен. Попробуйте позже.",
}


def get_rate_limit_message(endpoint: str) -> str:
    """Get custom error message for rate limited endpoint"""
    return RATE_LIMIT_MESSAGES.get(endpoint, RATE_LIMIT_MESSAGES["default"])
