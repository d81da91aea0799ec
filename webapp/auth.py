"""API-key guard for mutating endpoints."""

from __future__ import annotations

import hmac
import re
from typing import Optional

from fastapi import Depends, HTTPException, Request

from webapp.runtime import BriefingRuntime, get_runtime


_BEARER_RE = re.compile(r"^Bearer\s+", re.IGNORECASE)


def provided_api_key(request: Request) -> Optional[str]:
    """Key from ``x-api-key``, ``Authorization: Bearer`` or ``?api_key=``, in that order."""
    header_key = request.headers.get("x-api-key")
    if header_key:
        return header_key
    authorization = request.headers.get("authorization") or ""
    bearer = _BEARER_RE.sub("", authorization).strip()
    if bearer:
        return bearer
    return request.query_params.get("api_key") or None


def require_api_key(request: Request, runtime: BriefingRuntime = Depends(get_runtime)) -> None:
    expected = runtime.settings.api.key
    if not expected:
        return None
    provided = provided_api_key(request)
    if not provided or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return None
