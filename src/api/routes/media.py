"""
Media serving endpoint.

A single catch-all route receives every method and every path. The
request pipeline decides what happens (405 for anything but GET, referer
checks, lookup), so this module only translates between Starlette and
the framework-neutral `GatewayResponse`.

Object bodies are handed to the response as-is. Nothing is buffered, so
objects of any size are proxied with bounded memory.
"""

import logging

import anyio
from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from starlette.types import Receive, Scope, Send

from ...core.access.models import GatewayResponse, ObjectBody
from ...core.access.pipeline import handle_request
from ..dependencies import AllowListConfigDep, StorageClientDep

logger = logging.getLogger(__name__)

router = APIRouter()

# Methods outside this list still get a 405, from the HTTPException handler
ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class ObjectStreamResponse(StreamingResponse):
    """
    StreamingResponse that always releases the object body.

    The body is closed when the response finishes, fails or is cancelled,
    including when sending fails before the first chunk is read.
    """

    def __init__(self, content: ObjectBody, **kwargs) -> None:
        super().__init__(content, **kwargs)
        self._object_body = content

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            with anyio.CancelScope(shield=True):
                await self._object_body.aclose()


def request_path(request: Request) -> str:
    """
    The request path exactly as it arrived on the wire.

    Starlette's `request.url.path` is percent-decoded; object keys must
    not be, so the raw path is used whenever the server provides it.
    """
    raw_path = request.scope.get("raw_path")
    if raw_path is None:
        return request.scope["path"]
    return raw_path.split(b"?", 1)[0].decode("latin-1")


def to_starlette_response(result: GatewayResponse) -> Response:
    """Convert a pipeline result into a Starlette response."""
    if result.body is not None:
        return ObjectStreamResponse(
            result.body,
            status_code=result.status_code,
            headers=result.headers,
        )

    return PlainTextResponse(
        result.text or "",
        status_code=result.status_code,
        headers=result.headers,
    )


@router.api_route(
    "/{object_path:path}",
    methods=ALL_METHODS,
    include_in_schema=False,
)
async def serve_media(
    object_path: str,
    request: Request,
    config: AllowListConfigDep,
    storage: StorageClientDep,
) -> Response:
    """
    Serve an object from the media bucket.

    The pipeline derives the key from the raw request path, so "/"
    (an empty `object_path`) also goes through it and ends in a 404.
    """
    result = await handle_request(
        method=request.method,
        path=request_path(request),
        headers=request.headers,
        config=config,
        store=storage,
    )

    return to_starlette_response(result)
