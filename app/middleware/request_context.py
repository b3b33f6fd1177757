from __future__ import annotations

import logging
import time
from contextvars import ContextVar
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")

REQUEST_ID_HEADERS = ("X-Request-Id", "X-Correlation-Id")


def get_request_id() -> str:
    return request_id_var.get()


class RequestIdLogFilter(logging.Filter):
    """로그 레코드에 현재 요청의 request_id를 주입"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    요청마다 request_id를 바인딩하고 처리 결과를 한 줄로 기록합니다.

    - 클라이언트가 보낸 X-Request-Id(또는 X-Correlation-Id)를 그대로 사용합니다.
    - 응답 헤더에 X-Request-Id를 돌려줍니다.
    - 스트리밍 응답은 헤더 전송 시점까지의 시간만 측정됩니다.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = next(
            (request.headers.get(name) for name in REQUEST_ID_HEADERS if request.headers.get(name)),
            None,
        ) or uuid4().hex

        token = request_id_var.set(request_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)
            elapsed_ms = int((time.perf_counter() - start) * 1000)
            logger.info(
                "request method=%s route=%s status=%s elapsed_ms=%s",
                request.method,
                request.url.path,
                response.status_code,
                elapsed_ms,
            )
        finally:
            request_id_var.reset(token)

        response.headers.setdefault("X-Request-Id", request_id)
        return response
