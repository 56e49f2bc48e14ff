# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Cookie-only request gate, run before routing.

Never touches the database: a request for a protected area without any
session cookie is bounced to sign-in, everything else continues and gets
its path attached as ``x-pathname``. Having a cookie is not proof of a
valid session; the page-level gate in ``homex.permissions`` checks that.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Dict, Sequence, Union

from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse

from homex.auth.session import COOKIE_NAME
from homex.permissions import signin_url

PATHNAME_HEADER = "x-pathname"

PROTECTED_PREFIXES = tuple(
    p.strip() for p in os.getenv("HOMEX_PROTECTED_PREFIXES", "/admin,/operator").split(",") if p.strip()
)

# api routes, static files, favicon and images are left alone
_EXCLUDED = re.compile(r"^/(?:api(?:/|$)|static/|favicon\.ico$)|\.(?:png|jpe?g|svg)$")


@dataclass(frozen=True)
class Continue:
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Redirect:
    url: str


FilterResult = Union[Continue, Redirect]


def is_protected(path: str, prefixes: Sequence[str] = PROTECTED_PREFIXES) -> bool:
    return any(path.startswith(p) for p in prefixes)


def filter_request(path: str, cookie_value: str, prefixes: Sequence[str] = PROTECTED_PREFIXES) -> FilterResult:
    if not cookie_value and is_protected(path, prefixes):
        return Redirect(url=signin_url(path))
    return Continue(headers={PATHNAME_HEADER: path})


def install_edge_filter(app: FastAPI, prefixes: Sequence[str] = PROTECTED_PREFIXES) -> None:
    @app.middleware("http")
    async def _edge_filter(request: Request, call_next):
        path = request.url.path
        if _EXCLUDED.search(path):
            return await call_next(request)

        result = filter_request(path, request.cookies.get(COOKIE_NAME, ""), prefixes)
        if isinstance(result, Redirect):
            return RedirectResponse(url=result.url, status_code=307)

        # downstream handlers read these instead of re-parsing the URL
        raw = [(k, v) for k, v in request.scope["headers"] if k.decode("latin-1").lower() not in result.headers]
        raw.extend((k.encode("latin-1"), v.encode("utf-8")) for k, v in result.headers.items())
        request.scope["headers"] = raw
        request.state.pathname = path
        return await call_next(request)
