# ============================================================================
# API ROUTES
# ============================================================================
# STATUS: Core - FastAPI route definitions
# PURPOSE: HTTP endpoints for cluster job submission and callbacks
# CREATED: 17 MAR 2026
# ============================================================================
"""
API Routes

Cluster job endpoints. Job scripts call back into started/ended from the
compute nodes (see the submission script), so those routes take
array_index and exit_code as plain query strings, where a blank value
means "none".
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from core.errors import (
    JobNotFoundError,
    JobStateError,
    LaunchFailedError,
    ValidationFailedError,
)
from .schemas import (
    CallbackResponse,
    CancelResponse,
    ClusterJobSubmit,
    DeleteResponse,
    ErrorResponse,
    FailureCreate,
    JobLogResponse,
    SubmitResponse,
    WaitingReasonResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================
# These will be set by the main app at startup

_orchestrator = None
_callback_token: Optional[str] = None


def set_services(orchestrator, callback_token: Optional[str] = None):
    """Set service instances for dependency injection."""
    global _orchestrator, _callback_token
    _orchestrator = orchestrator
    _callback_token = callback_token


def get_orchestrator():
    if _orchestrator is None:
        raise HTTPException(500, "Orchestrator not initialized")
    return _orchestrator


def require_callback_token(authorization: Optional[str] = Header(None)) -> None:
    """Job scripts authenticate with the shared callback token, when one is set."""
    if not _callback_token:
        return
    expected = f"Bearer {_callback_token}"
    if authorization is None or not hmac.compare_digest(authorization, expected):
        raise HTTPException(401, "Invalid or missing callback token")


def _optional_int(name: str, value: Optional[str]) -> Optional[int]:
    if value is None or value.strip() == "":
        return None
    try:
        return int(value)
    except ValueError:
        raise HTTPException(400, f"{name} must be an integer, got: {value}")


def _raise_http(e: Exception):
    if isinstance(e, JobNotFoundError):
        raise HTTPException(404, str(e))
    if isinstance(e, ValidationFailedError):
        raise HTTPException(400, str(e))
    if isinstance(e, LaunchFailedError):
        raise HTTPException(502, str(e))
    if isinstance(e, JobStateError):
        raise HTTPException(409, str(e))
    raise e


# ============================================================================
# SUBMISSION
# ============================================================================

@router.post(
    "/cluster/jobs",
    response_model=SubmitResponse,
    status_code=201,
    tags=["Cluster Jobs"],
    responses={
        400: {"model": ErrorResponse, "description": "Job rejected"},
        409: {"model": ErrorResponse, "description": "Dependency not launched"},
        502: {"model": ErrorResponse, "description": "Backend refused the job"},
    },
)
async def submit_job(request: ClusterJobSubmit):
    """
    Submit a cluster job.

    Returns as soon as the backend has accepted (or refused) the job.
    """
    orchestrator = get_orchestrator()
    try:
        job_id = await orchestrator.submit(request.to_job())
    except (JobStateError, ValidationFailedError, LaunchFailedError) as e:
        logger.warning(f"Cluster job submission failed: {e}")
        _raise_http(e)

    return SubmitResponse(job_id=job_id, launched=job_id is not None)


# ============================================================================
# CALLBACKS FROM JOB SCRIPTS
# ============================================================================

@router.post(
    "/cluster/jobs/{job_id}/started",
    response_model=CallbackResponse,
    tags=["Callbacks"],
    dependencies=[Depends(require_callback_token)],
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def job_started(job_id: str, array_index: Optional[str] = Query(None)):
    orchestrator = get_orchestrator()
    index = _optional_int("array_index", array_index)
    try:
        await orchestrator.started(job_id, index)
    except (JobNotFoundError, JobStateError) as e:
        _raise_http(e)
    return CallbackResponse(job_id=job_id, array_index=index)


@router.post(
    "/cluster/jobs/{job_id}/ended",
    response_model=CallbackResponse,
    tags=["Callbacks"],
    dependencies=[Depends(require_callback_token)],
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def job_ended(
    job_id: str,
    array_index: Optional[str] = Query(None),
    exit_code: Optional[str] = Query(None),
):
    orchestrator = get_orchestrator()
    index = _optional_int("array_index", array_index)
    code = _optional_int("exit_code", exit_code)
    try:
        await orchestrator.ended(job_id, index, code)
    except (JobNotFoundError, JobStateError) as e:
        _raise_http(e)
    return CallbackResponse(job_id=job_id, array_index=index)


@router.post(
    "/cluster/jobs/{job_id}/failures",
    response_model=CallbackResponse,
    tags=["Callbacks"],
    dependencies=[Depends(require_callback_token)],
    responses={404: {"model": ErrorResponse}},
)
async def job_failure(
    job_id: str,
    request: Optional[FailureCreate] = None,
    array_index: Optional[str] = Query(None),
):
    """Record an out-of-band failure; the job will end as a failure."""
    orchestrator = get_orchestrator()
    index = _optional_int("array_index", array_index)
    reason = request.reason if request is not None else None
    try:
        await orchestrator.record_failure(job_id, index, reason)
    except (JobNotFoundError, JobStateError) as e:
        _raise_http(e)
    return CallbackResponse(job_id=job_id, array_index=index)


# ============================================================================
# INSPECTION
# ============================================================================

@router.get(
    "/cluster/jobs/{job_id}/log",
    response_model=JobLogResponse,
    tags=["Cluster Jobs"],
    responses={404: {"model": ErrorResponse}},
)
async def job_log(job_id: str, array_index: Optional[str] = Query(None)):
    orchestrator = get_orchestrator()
    index = _optional_int("array_index", array_index)
    try:
        data = await orchestrator.job_log_data(job_id, index)
    except JobNotFoundError as e:
        _raise_http(e)
    return JobLogResponse(**data)


@router.get(
    "/cluster/jobs/{job_id}/waiting-reason",
    response_model=WaitingReasonResponse,
    tags=["Cluster Jobs"],
    responses={404: {"model": ErrorResponse}},
)
async def job_waiting_reason(job_id: str):
    orchestrator = get_orchestrator()
    try:
        reason = await orchestrator.waiting_reason(job_id)
    except JobNotFoundError as e:
        _raise_http(e)
    return WaitingReasonResponse(job_id=job_id, reason=reason)


# ============================================================================
# OWNERS
# ============================================================================

@router.post(
    "/cluster/owners/{owner_id}/cancel",
    response_model=CancelResponse,
    tags=["Owners"],
)
async def cancel_owner(owner_id: str):
    """Cancel every job of an owner."""
    orchestrator = get_orchestrator()
    result = await orchestrator.cancel_all(owner_id)
    logger.info(f"Cancel of owner {owner_id}: {result.value}")
    return CancelResponse(owner_id=owner_id, result=result)


@router.delete(
    "/cluster/owners/{owner_id}",
    response_model=DeleteResponse,
    tags=["Owners"],
)
async def delete_owner(owner_id: str):
    """Delete every job (and log) of an owner."""
    orchestrator = get_orchestrator()
    deleted = await orchestrator.delete_all(owner_id)
    return DeleteResponse(owner_id=owner_id, deleted=deleted)
