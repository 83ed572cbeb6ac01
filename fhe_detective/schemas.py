"""
Pydantic Schemas for FHE Detective
==================================

Stable, minimal schemas for input/output.

Action results are tagged (pending/success/error) so a client can render the
state of a submit, decrypt or availability check without parsing messages.
"""

from typing import List, Optional
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# ENUMS
# =============================================================================

class StoreBackend(str, Enum):
    """Key/value backend implementations"""
    MEMORY = "memory"
    SQL = "sql"


class ErrorKind(str, Enum):
    """
    Error taxonomy.

    - UNAVAILABLE: backend not ready, reads degrade to empty
    - MALFORMED_RECORD: stored JSON failed to parse, record skipped
    - NOT_CONNECTED: no wallet connected, action aborted
    - SIGNING_REJECTED: user declined or provider failed, retry allowed
    - SUBMISSION_FAILURE: write path failed, retry allowed
    - SIGNATURE_INVALID: signature does not match challenge and address
    - DECODE_ERROR: confidential token could not be decoded
    - VALIDATION_ERROR: submission input rejected before any write
    """
    UNAVAILABLE = "unavailable"
    MALFORMED_RECORD = "malformed_record"
    NOT_CONNECTED = "not_connected"
    SIGNING_REJECTED = "signing_rejected"
    SUBMISSION_FAILURE = "submission_failure"
    SIGNATURE_INVALID = "signature_invalid"
    DECODE_ERROR = "decode_error"
    VALIDATION_ERROR = "validation_error"


class ActionStatus(str, Enum):
    """Status of a user-initiated action"""
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class AuthorizationState(str, Enum):
    """States of a single decrypt attempt"""
    IDLE = "idle"
    CHALLENGE_BUILT = "challenge_built"
    AWAITING_SIGNATURE = "awaiting_signature"
    AUTHORIZED = "authorized"
    REJECTED = "rejected"


class CredibilityBand(str, Enum):
    """Human reading of a decrypted credibility score"""
    HIGHLY_CREDIBLE = "highly_credible"        # > 75
    MODERATELY_CREDIBLE = "moderately_credible"  # > 50
    QUESTIONABLE = "questionable"              # > 25
    LOW = "low"


# =============================================================================
# INPUT SCHEMAS
# =============================================================================

class SubmitTestimonyRequest(BaseModel):
    """Request to submit a new testimony"""
    witness: str = Field(..., description="Witness display name")
    content: str = Field("", description="Testimony text")
    credibility: float = Field(50, ge=0, le=100, description="Credibility score (0-100)")
    case_id: str = Field("case-1", description="Case the testimony belongs to")
    address: Optional[str] = Field(None, description="Connected wallet address of the submitter")

    @field_validator("witness")
    @classmethod
    def witness_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("witness must not be empty")
        return value


class DecryptRequest(BaseModel):
    """Signed challenge presented to reveal one credibility score"""
    address: Optional[str] = Field(None, description="Connected wallet address")
    signature: Optional[str] = Field(None, description="Hex signature over the challenge message")


# =============================================================================
# OUTPUT SCHEMAS
# =============================================================================

class ActionResult(BaseModel):
    """Tagged outcome of a user-initiated action"""
    status: ActionStatus
    message: str
    error_kind: Optional[ErrorKind] = None
    testimony_id: Optional[str] = None


class CaseResponse(BaseModel):
    """Static case reference data"""
    id: str
    title: str
    description: str


class TestimonyResponse(BaseModel):
    """Testimony as exposed to clients (credibility stays encoded)"""
    id: str
    witness: str
    content: str
    timestamp: int
    case_id: str
    credibility: str = Field(..., description="Confidential credibility token")


class CaseStatsResponse(BaseModel):
    """Per-case statistics"""
    case_id: str
    testimony_count: int
    average_credibility: float
    contradiction_count: int


class ContradictionPairResponse(BaseModel):
    """A contradicting pair of witnesses"""
    testimony_id_a: str
    testimony_id_b: str
    witness_a: str
    witness_b: str
    credibility_difference: Optional[float] = None


class CaseAnalysisResponse(BaseModel):
    """Full analysis view of one case"""
    case: CaseResponse
    stats: CaseStatsResponse
    timeline: List[TestimonyResponse] = Field(default_factory=list)
    contradictions: List[ContradictionPairResponse] = Field(default_factory=list)


class ChallengeResponse(BaseModel):
    """Challenge message the wallet must sign"""
    message: str
    public_key: str
    contract_address: str
    chain_id: int
    start_timestamp: int
    duration_days: int


class DecryptResponse(BaseModel):
    """Outcome of a decrypt attempt"""
    testimony_id: str
    status: ActionStatus
    state: AuthorizationState
    value: Optional[float] = None
    band: Optional[CredibilityBand] = None
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Service version")
    store_available: bool = Field(..., description="Backend availability check")
    timestamp: datetime = Field(..., description="Current timestamp")


class ErrorDetail(BaseModel):
    """Structured error detail"""
    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")


class ErrorResponse(BaseModel):
    """Structured error response"""
    error: ErrorDetail
