"""Starlette middleware that runs every request through the RequestGate."""

import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import HTMLResponse

from .gate import GateDecision, RequestGate, RequestLatch

logger = logging.getLogger(__name__)

OperatorCheck = Callable[[Request], Union[bool, Awaitable[bool]]]

FORBIDDEN_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Access Forbidden</title>
    <style>
        body {
            font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, "Helvetica Neue", Arial, sans-serif;
            display: flex;
            justify-content: center;
            align-items: center;
            min-height: 100vh;
            margin: 0;
            background-color: #f5f5f5;
            color: #333;
        }
        .container {
            text-align: center;
            padding: 40px;
            background: white;
            border-radius: 8px;
            box-shadow: 0 2px 10px rgba(0,0,0,0.1);
        }
        h1 { color: #dc3545; margin-bottom: 20px; }
        p { color: #666; line-height: 1.6; }
    </style>
</head>
<body>
    <div class="container">
        <h1>403 - Access Forbidden</h1>
        <p>Automated requests are not allowed.</p>
    </div>
</body>
</html>"""


def forbidden_response() -> HTMLResponse:
    """The fixed page sent to blocked clients."""
    return HTMLResponse(
        content=FORBIDDEN_HTML,
        status_code=403,
        headers={"Content-Type": "text/html; charset=utf-8"},
    )


def get_client_ip(request: Request, trust_forwarded_for: bool = False) -> str:
    """Client address, optionally taken from the first X-Forwarded-For hop."""
    if trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
        if forwarded:
            return forwarded
    return request.client.host if request.client else "0.0.0.0"


def get_latch(request: Request) -> RequestLatch:
    """The request's latch, created on first use."""
    latch = getattr(request.state, "bot_blocker_latch", None)
    if latch is None:
        latch = RequestLatch()
        request.state.bot_blocker_latch = latch
    return latch


class BotBlockerMiddleware(BaseHTTPMiddleware):
    """
    Answers bot requests with a 403 page before they reach the app.

    Args:
        app: ASGI app
        gate: Configured RequestGate
        is_operator: Optional check for logged-in admins (sync or async)
        trust_forwarded_for: Read the client IP from X-Forwarded-For
    """

    def __init__(
        self,
        app,
        gate: RequestGate,
        is_operator: Optional[OperatorCheck] = None,
        trust_forwarded_for: bool = False,
    ):
        super().__init__(app)
        self.gate = gate
        self.is_operator = is_operator
        self.trust_forwarded_for = trust_forwarded_for

    async def _check_operator(self, request: Request) -> bool:
        if self.is_operator is None:
            return False
        try:
            result = self.is_operator(request)
            if inspect.isawaitable(result):
                result = await result
            return bool(result)
        except Exception:
            logger.exception("Operator check failed, treating request as anonymous")
            return False

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if request.url.query:
            path = f"{path}?{request.url.query}"

        decision = await self.gate.handle(
            path=path,
            user_agent=request.headers.get("user-agent", ""),
            ip=get_client_ip(request, self.trust_forwarded_for),
            is_operator=await self._check_operator(request),
            latch=get_latch(request),
        )
        if decision == GateDecision.BLOCKED:
            return forbidden_response()
        return await call_next(request)
