"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in
api/routes/gateway.py (to apply per-route limits with @limiter.limit()).

A single shared instance means all routes share one in-memory counter store.
Behind nginx the peer address is the proxy, so the key function prefers the
X-Original-Remote-Addr header nginx sets on auth subrequests.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address


def client_address(request: Request) -> str:
    return request.headers.get("X-Original-Remote-Addr") or get_remote_address(request)


limiter = Limiter(key_func=client_address, storage_uri="memory://")
