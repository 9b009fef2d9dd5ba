"""
Application-wide exception handlers.

Validation failures become 400 with a field-error map, HTTPExceptions keep
their status and headers, anything else is logged and reported as 500.
"""
import logging
import os
from typing import Dict, List

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

IS_PRODUCTION = os.getenv("ENVIRONMENT") == "production"


def flatten_errors(errors) -> dict:
    field_errors: Dict[str, List[str]] = {}
    form_errors: List[str] = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        if loc:
            field_errors.setdefault(".".join(loc), []).append(err.get("msg", "Invalid value"))
        else:
            form_errors.append(err.get("msg", "Invalid value"))
    return {"fieldErrors": field_errors, "formErrors": form_errors}


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Données invalides",
            "details": flatten_errors(exc.errors()),
        },
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    content = {"success": False, "error": "Erreur serveur"}
    if not IS_PRODUCTION:
        content["details"] = str(exc)
    return JSONResponse(status_code=500, content=content)


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
