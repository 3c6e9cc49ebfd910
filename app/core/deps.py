"""
FastAPI dependencies shared by the endpoints.
"""

import ipaddress
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.csrf import CsrfStore, MemoryCsrfStore, SqlCsrfStore
from app.core.database import get_db

# Length of the source_ip column
MAX_CLIENT_IP_LENGTH = 255

# Process-wide store for CSRF_STORE_BACKEND=memory
_memory_csrf_store = MemoryCsrfStore()


def get_csrf_store(db: Session = Depends(get_db)) -> CsrfStore:
    """CSRF entry store selected by CSRF_STORE_BACKEND."""
    if settings.CSRF_STORE_BACKEND == "memory":
        return _memory_csrf_store
    return SqlCsrfStore(db)


def _parse_ip(value: Optional[str]) -> Optional[str]:
    """Normalized address, or None when the header value is not an IP."""
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def get_client_ip(request: Request) -> str:
    """
    Extract the client's IP address from the request.

    With TRUST_PROXY_HEADERS set, checks Client-IP, then the first
    X-Forwarded-For hop (proxy/load balancer). Otherwise, or when those
    headers hold no valid address, uses the direct connection address.

    Args:
        request: FastAPI request object

    Returns:
        Client IP address as string
    """
    if settings.TRUST_PROXY_HEADERS:
        client_ip = _parse_ip(request.headers.get("Client-IP"))
        if client_ip:
            return client_ip

        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            client_ip = _parse_ip(forwarded_for.split(",")[0])
            if client_ip:
                return client_ip

    if request.client and request.client.host:
        return request.client.host[:MAX_CLIENT_IP_LENGTH]
    return "unknown"
