"""
The pre-request login check.

Instead of repeating

    if not session.get('user_id'):
        return {'error': 'Unauthorized'}, 401

at the top of every handler, `check_if_logged_in` is installed once on a
router through `LoginRequiredRoute`. It runs as soon as a route matches,
before path parameters are converted or the request body is read, so an
anonymous request is answered with 401 however malformed it is.
Endpoints whose names are listed in `Settings.exempt_endpoints` skip it.
"""

import logging
from typing import Any, Callable, Coroutine, Dict, Optional

from fastapi import Request, Response
from fastapi.routing import APIRoute

from .constants import SESSION_USER_KEY
from .errors import UnauthorizedError

logger = logging.getLogger(__name__)


def session_id_from(request: Request) -> Optional[str]:
    settings = request.app.state.settings
    return request.cookies.get(settings.session_cookie_name)


def current_session(request: Request) -> Dict[str, Any]:
    """Session payload for this request, {} when there is none."""
    manager = request.app.state.session_manager
    return manager.get_session(session_id_from(request)) or {}


def endpoint_name(request: Request) -> Optional[str]:
    """Name of the matched route (FastAPI defaults it to the handler's function name)."""
    route = request.scope.get("route")
    name = getattr(route, "name", None)
    if name:
        return name
    endpoint = request.scope.get("endpoint")
    return getattr(endpoint, "__name__", None)


def check_if_logged_in(request: Request) -> None:
    """Reject the request with 401 unless the session has a user_id or the endpoint is exempt."""
    name = endpoint_name(request)
    if current_session(request).get(SESSION_USER_KEY):
        return
    if name in request.app.state.settings.exempt_endpoint_set:
        logger.debug("Endpoint %s is exempt from the login check", name)
        return
    logger.info("Rejected %s %s (endpoint=%s): no user in session", request.method, request.url.path, name)
    raise UnauthorizedError(name)


class LoginRequiredRoute(APIRoute):
    """Route class that runs `check_if_logged_in` before the route's own handling."""

    def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
        handler = super().get_route_handler()

        async def login_required_handler(request: Request) -> Response:
            check_if_logged_in(request)
            return await handler(request)

        return login_required_handler
