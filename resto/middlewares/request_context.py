from uuid import uuid4

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from resto.core import context

REQUEST_ID_HEADER = b"x-request-id"


class RequestContextMiddleware:
    """Bind a request id for log lines and echo it back on the response."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        incoming = dict(scope.get("headers", [])).get(REQUEST_ID_HEADER, b"").decode()
        request_id = incoming[:64] or uuid4().hex
        context.clear_context()
        context.set_request_id(request_id)

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                message["headers"] = [
                    *message.get("headers", []),
                    (REQUEST_ID_HEADER, request_id.encode()),
                ]
            await send(message)

        await self.app(scope, receive, send_with_request_id)
