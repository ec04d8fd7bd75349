"""LoggingMiddleware -- 请求级 request_id 与耗时

为每个 HTTP 请求生成 request_id，绑定到 structlog contextvars。
请求体从不记录；确认路由额外标记 sensitive，只记录 body 长度。
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from ulid import ULID

# 请求体携带确认密码的路由
_SENSITIVE_SUFFIXES = ("/confirm",)


def is_sensitive_path(path: str) -> bool:
    return path.rstrip("/").endswith(_SENSITIVE_SUFFIXES)


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求级日志中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = str(ULID())
        path = request.url.path

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=path,
        )

        log = structlog.get_logger()
        started = time.perf_counter()
        if is_sensitive_path(path):
            await log.ainfo(
                "request_started",
                sensitive=True,
                body_length=request.headers.get("content-length"),
            )
        else:
            await log.ainfo("request_started")

        try:
            response = await call_next(request)
        except Exception:
            await log.aexception(
                "request_failed",
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
            )
            raise

        await log.ainfo(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )

        response.headers["X-Request-ID"] = request_id
        return response
