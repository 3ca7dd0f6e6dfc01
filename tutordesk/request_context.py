from __future__ import annotations

from contextvars import ContextVar


# Label of the HTTP route being served, read by the slow query logger.
current_endpoint: ContextVar[str] = ContextVar('current_endpoint', default='background')
