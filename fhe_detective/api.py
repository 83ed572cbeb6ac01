"""
FHE Detective API
=================

FastAPI endpoints over the detective service.

Endpoints:
- GET  /health                              - Health check
- GET  /cases                               - Case catalog
- GET  /cases/{case_id}/testimonies         - Testimonies of a case (newest first)
- GET  /cases/{case_id}/analysis            - Stats, timeline, contradictions
- POST /testimonies                         - Submit a testimony
- POST /refresh                             - Reload from the backend
- GET  /challenge                           - Challenge message to sign
- POST /testimonies/{testimony_id}/decrypt  - Reveal one score with a signed challenge
- POST /availability                        - Backend availability check

Run with:
    uvicorn fhe_detective.api:app --host 0.0.0.0 --port 8000
"""

import asyncio
import logging
import os
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .analyzer import credibility_band
from .authorizer import PresignedWallet
from .config import get_settings
from .errors import TestimonyNotFoundError, UnknownCaseError
from .models import CASES, Case, Testimony
from .schemas import (
    ActionResult,
    ActionStatus,
    CaseAnalysisResponse,
    CaseResponse,
    CaseStatsResponse,
    ChallengeResponse,
    ContradictionPairResponse,
    DecryptRequest,
    DecryptResponse,
    ErrorDetail,
    ErrorResponse,
    HealthResponse,
    SubmitTestimonyRequest,
    TestimonyResponse,
)
from .service import DetectiveService, create_service_async

logger = logging.getLogger(__name__)


# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="FHE Detective",
    description="Confidential witness credibility scores with contradiction analysis",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)


def _parse_cors_origins(raw: str) -> List[str]:
    origins: List[str] = []
    for item in raw.split(","):
        origin = item.strip().strip('"').strip("'").rstrip("/")
        if origin:
            origins.append(origin)
    return origins


CORS_ALLOW_ORIGINS = _parse_cors_origins(
    os.environ.get("CORS_ALLOW_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


# =============================================================================
# Dependencies
# =============================================================================

_service: Optional[DetectiveService] = None
_service_lock = asyncio.Lock()


async def get_service() -> DetectiveService:
    """Lazily build the process-wide service (once, even under concurrent first requests)"""
    global _service
    if _service is None:
        async with _service_lock:
            if _service is None:
                _service = await create_service_async()
    return _service


def _not_found(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(),
    )


def _case_response(case: Case) -> CaseResponse:
    return CaseResponse(id=case.id, title=case.title, description=case.description)


def _testimony_response(testimony: Testimony) -> TestimonyResponse:
    return TestimonyResponse(
        id=testimony.id,
        witness=testimony.witness,
        content=testimony.encrypted_content,
        timestamp=testimony.timestamp,
        case_id=testimony.case_id,
        credibility=testimony.credibility,
    )


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(service: DetectiveService = Depends(get_service)):
    """Health check endpoint"""
    settings = get_settings()
    return HealthResponse(
        status="healthy",
        version=settings.service_version,
        store_available=await service.repository.is_available(),
        timestamp=datetime.now(),
    )


@app.get("/cases", response_model=List[CaseResponse], tags=["Cases"])
async def list_cases():
    return [_case_response(case) for case in CASES]


@app.get("/cases/{case_id}/testimonies", response_model=List[TestimonyResponse], tags=["Cases"])
async def list_case_testimonies(case_id: str, service: DetectiveService = Depends(get_service)):
    await service.refresh()
    try:
        testimonies = service.testimonies_for_case(case_id)
    except UnknownCaseError:
        raise _not_found("case_not_found", f"Unknown case: {case_id}")
    return [_testimony_response(t) for t in testimonies]


@app.get("/cases/{case_id}/analysis", response_model=CaseAnalysisResponse, tags=["Cases"])
async def get_case_analysis(case_id: str, service: DetectiveService = Depends(get_service)):
    await service.refresh()
    try:
        analysis = service.case_analysis(case_id)
    except UnknownCaseError:
        raise _not_found("case_not_found", f"Unknown case: {case_id}")

    by_id = {t.id: t for t in analysis.timeline}
    pairs = []
    for pair in analysis.contradictions:
        first, second = by_id[pair.id1], by_id[pair.id2]
        pairs.append(ContradictionPairResponse(
            testimony_id_a=first.id,
            testimony_id_b=second.id,
            witness_a=first.witness,
            witness_b=second.witness,
            credibility_difference=service.codec.credibility_difference(first.credibility, second.credibility),
        ))

    stats = analysis.stats
    return CaseAnalysisResponse(
        case=_case_response(analysis.case),
        stats=CaseStatsResponse(
            case_id=stats.case_id,
            testimony_count=stats.testimony_count,
            average_credibility=stats.average_credibility,
            contradiction_count=stats.contradiction_count,
        ),
        timeline=[_testimony_response(t) for t in analysis.timeline],
        contradictions=pairs,
    )


@app.post("/testimonies", response_model=ActionResult, tags=["Testimonies"])
async def submit_testimony(
    request: SubmitTestimonyRequest,
    service: DetectiveService = Depends(get_service),
):
    return await service.submit_testimony(request)


@app.post("/refresh", response_model=List[TestimonyResponse], tags=["Testimonies"])
async def refresh(service: DetectiveService = Depends(get_service)):
    snapshot = await service.refresh()
    return [_testimony_response(t) for t in snapshot.testimonies]


@app.get("/challenge", response_model=ChallengeResponse, tags=["Decryption"])
async def get_challenge(service: DetectiveService = Depends(get_service)):
    session = service.authorizer.session
    return ChallengeResponse(
        message=session.challenge,
        public_key=session.public_key,
        contract_address=session.contract_address,
        chain_id=session.chain_id,
        start_timestamp=session.start_timestamp,
        duration_days=session.duration_days,
    )


@app.post("/testimonies/{testimony_id}/decrypt", response_model=DecryptResponse, tags=["Decryption"])
async def decrypt_testimony(
    testimony_id: str,
    request: DecryptRequest,
    service: DetectiveService = Depends(get_service),
):
    """
    Reveal one credibility score.

    The client signs the /challenge message with its wallet and sends the
    signature along; it is checked against the supplied address.
    """
    wallet = PresignedWallet(request.address, request.signature)
    try:
        result = await service.decrypt(testimony_id, wallet=wallet)
    except TestimonyNotFoundError:
        raise _not_found("testimony_not_found", f"Unknown testimony: {testimony_id}")

    if result.authorized:
        return DecryptResponse(
            testimony_id=testimony_id,
            status=ActionStatus.SUCCESS,
            state=result.state,
            value=result.value,
            band=credibility_band(result.value),
        )

    return DecryptResponse(
        testimony_id=testimony_id,
        status=ActionStatus.ERROR,
        state=result.state,
        error_kind=result.error_kind,
        message=result.reason,
    )


@app.post("/availability", response_model=ActionResult, tags=["Health"])
async def check_availability(service: DetectiveService = Depends(get_service)):
    return await service.check_availability()


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler - always return valid JSON"""
    logger.error("Unhandled exception on %s: %s", request.url.path, exc.__class__.__name__)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(code="internal_error", message="Internal server error")
        ).model_dump(),
    )


# =============================================================================
# Main (for direct execution)
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "fhe_detective.api:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
