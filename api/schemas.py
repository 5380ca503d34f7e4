# ============================================================================
# API SCHEMAS
# ============================================================================
# STATUS: Core - Request/Response schemas
# PURPOSE: Pydantic models for API validation
# CREATED: 17 MAR 2026
# ============================================================================
"""
API Schemas

Request and response models for the cluster job API.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from core.contracts import CancelResult, JobStatus, ResultType, RunStatus
from core.models import ClusterJob, Commands, EnvVar


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================

class ClusterJobSubmit(BaseModel):
    """Request to submit a new cluster job."""
    commands: Commands
    dir: Path = Field(..., description="Working directory of the job")
    container_id: Optional[str] = Field(None, description="Container profile to run in")
    env: List[EnvVar] = Field(default_factory=list)
    args: List[str] = Field(default_factory=list, description="Scheduler arguments")
    deps: List[str] = Field(default_factory=list, description="<jobId> or <jobId>_<arrayIndex>")
    owner_id: Optional[str] = Field(None, max_length=128)
    owner_listener_id: Optional[str] = None
    web_name: Optional[str] = None
    cluster_name: Optional[str] = None
    type: Optional[str] = None
    template: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "commands": {"type": "script", "commands": ["echo hello"], "array_size": 4},
                    "dir": "/data/projects/p1",
                    "args": ["--cpus-per-task=2", "--mem=4G"],
                    "owner_id": "stage-17",
                }
            ]
        }
    }

    def to_job(self) -> ClusterJob:
        return ClusterJob(**dict(self))


class FailureCreate(BaseModel):
    """Out-of-band failure report (e.g. from a liveness monitor)."""
    reason: Optional[str] = Field(None, max_length=1024)


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class SubmitResponse(BaseModel):
    job_id: Optional[str] = Field(None, description="None if the backend launched nothing")
    launched: bool


class CallbackResponse(BaseModel):
    job_id: str
    array_index: Optional[int] = None
    accepted: bool = True


class CancelResponse(BaseModel):
    owner_id: str
    result: CancelResult


class DeleteResponse(BaseModel):
    owner_id: str
    deleted: int


class WaitingReasonResponse(BaseModel):
    job_id: str
    reason: str


class JobLogResponse(BaseModel):
    """What the UI shows for a job (or array element) log."""
    job_id: str
    array_index: Optional[int] = None
    name: Optional[str] = None
    status: Optional[JobStatus] = None
    run_status: RunStatus
    representative_command: str
    commands: List[List[str]]
    submit_failure: Optional[str] = None
    launch_result: Optional[Dict[str, Any]] = None
    result_type: Optional[ResultType] = None
    exit_code: Optional[int] = None
    out: Optional[str] = None
    array_size: Optional[int] = None
    failed_array_indices: List[int] = Field(default_factory=list)
    history: List[Dict[str, Any]] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    detail: str


__all__ = [
    "ClusterJobSubmit",
    "FailureCreate",
    "SubmitResponse",
    "CallbackResponse",
    "CancelResponse",
    "DeleteResponse",
    "WaitingReasonResponse",
    "JobLogResponse",
    "ErrorResponse",
]
