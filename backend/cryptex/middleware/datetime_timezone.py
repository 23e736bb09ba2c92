"""Mark naive ISO timestamps in JSON API responses as UTC"""
import re

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# "2026-01-05T09:30:00.123456" but not "...00.123Z" or "...00+00:00"
_NAIVE_ISO = re.compile(rb'"(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?)"')


def mark_utc(body: bytes) -> bytes:
    return _NAIVE_ISO.sub(rb'"\1Z"', body)


class DatetimeTimezoneMiddleware(BaseHTTPMiddleware):
    """Database timestamps are stored as naive UTC; clients get them with a 'Z' suffix."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        if not request.url.path.startswith("/api/"):
            return response
        if not response.headers.get("content-type", "").startswith("application/json"):
            return response

        body = b""
        async for chunk in response.body_iterator:
            body += chunk

        headers = {k: v for k, v in response.headers.items() if k.lower() != "content-length"}
        return Response(
            content=mark_utc(body),
            status_code=response.status_code,
            headers=headers,
            media_type=response.media_type,
        )
