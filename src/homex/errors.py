# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Something went wrong"


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str = GENERIC_ERROR, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class UnauthorizedError(AppError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class ForbiddenError(AppError):
    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class NotFoundError(AppError):
    status_code = 404

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class ValidationError(AppError):
    status_code = 422

    def __init__(self, message: str, field_errors: Optional[Dict[str, List[str]]] = None):
        super().__init__(message)
        self.field_errors = field_errors


def error_response(exc: Exception) -> JSONResponse:
    if isinstance(exc, AppError):
        body: dict = {"error": exc.message}
        if isinstance(exc, ValidationError) and exc.field_errors:
            body["fieldErrors"] = exc.field_errors
        return JSONResponse(body, status_code=exc.status_code)

    logger.error("Unexpected error", exc_info=exc)
    return JSONResponse({"error": GENERIC_ERROR}, status_code=500)


def _field_errors(exc: RequestValidationError) -> Dict[str, List[str]]:
    out: Dict[str, List[str]] = {}
    for err in exc.errors():
        # drop the "body"/"query" prefix FastAPI puts in front of the field name
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "header", "cookie")]
        out.setdefault(".".join(loc) or "_form", []).append(err.get("msg", "Invalid value"))
    return out


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def _app_error(request: Request, exc: AppError):
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        return error_response(ValidationError("Validation failed", _field_errors(exc)))

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception):
        return error_response(exc)
