from __future__ import annotations

from fastapi.routing import APIRoute
from starlette.requests import Request

from tutordesk.request_context import current_endpoint


class EndpointNameRoute(APIRoute):
    """Tags every request with `METHOD /path` so db logs can name the route."""

    def get_route_handler(self):
        original_handler = super().get_route_handler()

        async def labelled_handler(request: Request):
            token = current_endpoint.set(f"{request.method} {self.path}")
            try:
                return await original_handler(request)
            finally:
                current_endpoint.reset(token)

        return labelled_handler
