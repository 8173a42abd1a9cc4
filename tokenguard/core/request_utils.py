"""Request utility functions for building device snapshots from HTTP requests."""

import ipaddress
import logging

from fastapi import Request

logger = logging.getLogger(__name__)

# Used when the transport reports no usable peer address (e.g. test clients)
FALLBACK_IP = "127.0.0.1"

_LOCAL_PROXIES = ("127.0.0.1", "::1", "localhost")


def _is_valid_ip(ip_str: str) -> bool:
    """Check if a string is a valid IP address."""
    try:
        ipaddress.ip_address(ip_str)
        return True
    except ValueError:
        return False


def get_client_ip(request: Request) -> str:
    """Get the client IP address from a request.

    X-Real-IP is only honoured when the direct peer is a local reverse
    proxy. X-Forwarded-For is NOT trusted as it can be easily spoofed.
    """
    if request.client and request.client.host in _LOCAL_PROXIES:
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            ip = real_ip.strip()
            if _is_valid_ip(ip):
                return ip
            logger.warning(f"Invalid X-Real-IP: {real_ip}")

    if request.client and _is_valid_ip(request.client.host):
        return request.client.host

    return FALLBACK_IP


def get_user_agent(request: Request) -> str:
    return request.headers.get("User-Agent", "")[:1000]
