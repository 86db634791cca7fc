"""
请求/响应日志中间件

每个请求记录开始与结束（状态码、耗时）；请求体仅在 DEBUG 或显式
X-Log-Body: true 时记录，网关签名、密钥与运营凭据一律脱敏。
"""
import json
import time
from typing import Any
from urllib.parse import parse_qsl

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.logging_config import get_logger
from core.config import settings


logger = get_logger(__name__)

SKIP_PATHS = frozenset({"/health", "/docs", "/redoc", "/openapi.json"})

SENSITIVE_FIELDS = frozenset({
    "signature_key",
    "server_key",
    "client_key",
    "authorization",
    "x-operator-key",
    "token",
    "secret",
    "api_key",
})


def sanitize(data: Any) -> Any:
    if isinstance(data, dict):
        return {k: ("***" if str(k).lower() in SENSITIVE_FIELDS else sanitize(v)) for k, v in data.items()}
    if isinstance(data, list):
        return [sanitize(v) for v in data]
    return data


class LoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.log_body_default: bool = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT and settings.DEBUG
        self.max_body_bytes: int = settings.LOG_REQUEST_BODY_MAX_BYTES

    async def dispatch(self, request: Request, call_next):
        if request.url.path in SKIP_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        request_info = await self._request_info(request)
        logger.info("request_started", **request_info)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=time.perf_counter() - started,
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=True,
                **request_info,
            )
            raise

        duration = time.perf_counter() - started
        self._log_response(response, duration, request_info)
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    async def _request_info(self, request: Request) -> dict:
        info: dict[str, Any] = {
            "method": request.method,
            "path": request.url.path,
            "query_params": dict(request.query_params),
        }
        if request.method in ("POST", "PUT", "PATCH") and self._wants_body(request):
            body = await self._body_snippet(request)
            if body is not None:
                info["body"] = body
        user_agent = request.headers.get("User-Agent")
        if user_agent:
            info["user_agent"] = user_agent
        return info

    def _wants_body(self, request: Request) -> bool:
        flag = (request.headers.get("X-Log-Body") or "").lower()
        if flag in {"true", "1", "yes"}:
            return True
        if flag in {"false", "0", "no"}:
            return False
        return self.log_body_default

    async def _body_snippet(self, request: Request) -> Any:
        raw = await request.body()
        if not raw:
            return None
        text = raw[: self.max_body_bytes].decode("utf-8", errors="ignore")
        content_type = request.headers.get("content-type", "").lower()
        if "application/x-www-form-urlencoded" in content_type:
            # Midtrans 可按表单格式投递回调
            return sanitize(dict(parse_qsl(text, keep_blank_values=True)))
        if "application/json" in content_type:
            try:
                return sanitize(json.loads(text))
            except ValueError:
                # 截断后的 JSON 无法解析也无法脱敏，只记录长度
                return {"truncated": True, "bytes": len(raw)}
        return {"bytes": len(raw)}

    @staticmethod
    def _log_response(response: Response, duration: float, request_info: dict) -> None:
        status_code = response.status_code
        if status_code < 400:
            log = logger.info
            event = "request_completed"
        elif status_code < 500:
            log = logger.warning
            event = "request_client_error"
        else:
            log = logger.error
            event = "request_server_error"
        log(event, status_code=status_code, duration=duration, **request_info)
