"""
HTTP -> HTTPS redirect listener.
"""
import asyncio
import logging
from typing import Optional

import uvicorn
from starlette.responses import PlainTextResponse, RedirectResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from .hosts import _strip_port


logger = logging.getLogger(__name__)


def https_url(host: str, https_port: int, path: str, query: str = "") -> str:
    """Target URL for a redirected request; port 443 is omitted."""
    host = _strip_port(host)
    if ":" in host:
        host = f"[{host}]"
    target = f"https://{host}" if https_port == 443 else f"https://{host}:{https_port}"
    target += path or "/"
    if query:
        target += f"?{query}"
    return target


class HTTPSRedirectApp:
    """ASGI app answering every HTTP request with a 301 to the HTTPS port."""

    def __init__(self, https_port: int = 443):
        self.https_port = https_port

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            return

        headers = {k.decode("latin-1").lower(): v.decode("latin-1") for k, v in scope.get("headers", [])}
        host = headers.get("host", "")
        if not host:
            response = PlainTextResponse("Missing Host header", status_code=400)
        else:
            query = scope.get("query_string", b"").decode("latin-1")
            target = https_url(host, self.https_port, scope.get("path", "/"), query)
            response = RedirectResponse(target, status_code=301)
        await response(scope, receive, send)


def start_https_redirect(
    host: str,
    port: int,
    https_port: int,
    app: Optional[ASGIApp] = None,
) -> tuple[uvicorn.Server, asyncio.Task]:
    """
    Serve HTTP->HTTPS redirects on ``host:port`` in a background task.

    Args:
        host: Bind address
        port: Plain HTTP port (usually 80)
        https_port: Port the redirects point to
        app: ASGI app to serve instead of the bare redirect (for example
            the redirect wrapped by the ACME challenge responder)

    Returns:
        The uvicorn server (set ``should_exit`` to stop) and its task
    """
    config = uvicorn.Config(
        app or HTTPSRedirectApp(https_port),
        host=host,
        port=port,
        log_level="warning",
        lifespan="off",
        timeout_keep_alive=5,
    )
    server = uvicorn.Server(config)
    # The main server owns signal handling
    server.install_signal_handlers = lambda: None

    task = asyncio.create_task(server.serve())
    logger.info("[TLS-REDIRECT] HTTP->HTTPS redirect server on %s:%s", host, port)
    return server, task
