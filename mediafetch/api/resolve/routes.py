from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from mediafetch.models.errors import ErrorCode
from mediafetch.models.media import ExtractionResult
from mediafetch.models.resolve.schemas import ResolveRequest
from mediafetch.services.resolver.service import Resolver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/resolve", tags=["resolve"])

STATUS_BY_ERROR: dict[ErrorCode, int] = {
    ErrorCode.INVALID_URL: 400,
    ErrorCode.UNSUPPORTED_PLATFORM: 400,
    ErrorCode.CREDENTIAL_REQUIRED: 401,
    ErrorCode.NO_CREDENTIAL_AVAILABLE: 401,
    ErrorCode.AGE_RESTRICTED: 403,
    ErrorCode.PRIVATE_CONTENT: 403,
    ErrorCode.NO_MEDIA_FOUND: 404,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.UPSTREAM_ERROR: 502,
    ErrorCode.MAINTENANCE: 503,
    ErrorCode.PLATFORM_DISABLED: 503,
    ErrorCode.UPSTREAM_TIMEOUT: 504,
}


# ---------------------------------------------------------------------------
# Dependency
# ---------------------------------------------------------------------------


def _get_resolver(request: Request) -> Resolver:
    """FastAPI dependency returning the resolver built in the lifespan."""
    return request.app.state.container.resolver


def _respond(result: ExtractionResult) -> ExtractionResult | JSONResponse:
    if result.success:
        return result
    status = STATUS_BY_ERROR.get(result.error_code, 502)
    logger.info("Resolve failed with %s (%s)", result.error_code, status)
    return JSONResponse(status_code=status, content=result.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# POST /resolve
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=ExtractionResult,
    summary="Resolve a post URL into downloadable media formats",
)
async def post_resolve(
    body: ResolveRequest,
    resolver: Resolver = Depends(_get_resolver),
) -> ExtractionResult | JSONResponse:
    """Resolve ``body.url``.

    - **200** - media found
    - **400** - invalid or unsupported URL
    - **401** - a credential is needed and none can be used
    - **403** - age-restricted or private content
    - **404** - no media in the post
    - **429** - platform rate limit reached
    - **502/504** - upstream failure or timeout
    - **503** - maintenance or platform disabled
    """
    result = await resolver.resolve(
        body.url, principal=body.principal, skip_cache=body.skip_cache
    )
    return _respond(result)


# ---------------------------------------------------------------------------
# GET /resolve
# ---------------------------------------------------------------------------


@router.get(
    "",
    response_model=ExtractionResult,
    summary="Resolve a post URL (query-string form)",
)
async def get_resolve(
    url: str = Query(..., min_length=1, max_length=2048),
    resolver: Resolver = Depends(_get_resolver),
) -> ExtractionResult | JSONResponse:
    return _respond(await resolver.resolve(url))
