"""GateError -> HTTP 错误响应

错误体统一为 {"error": {"code", "message", ...}}。
"""

from starlette.responses import JSONResponse

from clawgate.core.exceptions import GateError, PartialDeliveryFailure


def error_response(status_code: int, exc: GateError) -> JSONResponse:
    body: dict = {
        "code": exc.code,
        "message": str(exc),
        "recoverable": exc.recoverable,
    }
    if isinstance(exc, PartialDeliveryFailure):
        body["failed_slot"] = exc.failed_slot
        body["failed_channel"] = exc.failed_channel
    return JSONResponse(status_code=status_code, content={"error": body})
