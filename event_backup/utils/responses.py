# event_backup/utils/responses.py
"""
Structured API responses shared by the FastAPI routers and the serverless handler.
Every response carries JSON content type and an open CORS origin.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from fastapi.responses import JSONResponse

ERROR_MESSAGE_400 = "Your request is malformed or invalid: "
ERROR_MESSAGE_404 = "Route not found: "
ERROR_MESSAGE_500 = "An internal server error has occured: "
ERROR_GENERAL = "you must have a valid body object in your request"
ERROR_TRIGGERS = "you must have triggers in your payload"
ERROR_STORAGE_CONFIG = "Server configuration error: StorageBucket not configured"
ERROR_QUEUE_CONFIG = "Server configuration error: SQS queue not configured"

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "Access-Control-Allow-Origin": "*",
}

CORS_HEADERS = {
    **DEFAULT_HEADERS,
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, X-API-Key",
}


@dataclass
class ApiResponse:
    status_code: int
    body: Any
    headers: dict = field(default_factory=lambda: dict(DEFAULT_HEADERS))

    @property
    def body_text(self) -> str:
        if isinstance(self.body, str):
            return self.body
        return json.dumps(self.body, default=str)

    def to_proxy(self) -> dict:
        """API Gateway proxy-integration shape."""
        return {"statusCode": self.status_code, "headers": self.headers, "body": self.body_text}

    def to_fastapi(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.body, headers=self.headers)


def ok(body: Any) -> ApiResponse:
    return ApiResponse(200, body)


def error(status_code: int, message: str) -> ApiResponse:
    return ApiResponse(status_code, {"msg": message})


def bad_request(detail: str) -> ApiResponse:
    return error(400, f"{ERROR_MESSAGE_400}{detail}")


def not_found(message: str) -> ApiResponse:
    return error(404, message)


def route_not_found(path: Optional[str]) -> ApiResponse:
    return error(404, f"{ERROR_MESSAGE_404}{path}")


def server_error(detail: str) -> ApiResponse:
    return error(500, f"{ERROR_MESSAGE_500}{detail}")


def cors_preflight() -> ApiResponse:
    return ApiResponse(200, {"msg": "CORS preflight"}, dict(CORS_HEADERS))


def server_error_raw(message: str) -> ApiResponse:
    """500 with `message` as-is (configuration errors carry their own prefix)."""
    return error(500, message)
