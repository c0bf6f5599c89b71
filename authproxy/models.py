"""
Data Models Module

This module defines Pydantic models for the request-scoped values passed
between the validator and the forwarding pipeline, and for the bodies the
proxy generates itself.

Models are organized by functional area:
- Validation models (the two-variant credential check outcome)
- Response models (locally generated error and health bodies)
"""

from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Validation Models
# ============================================================================

class RejectionReason(str, Enum):
    """Why a credential check failed."""
    MISSING = "missing credential"
    INVALID = "invalid credential"


class Authorized(BaseModel):
    """Credential matched the configured secret."""
    model_config = ConfigDict(frozen=True)

    outcome: Literal["authorized"] = "authorized"


class Rejected(BaseModel):
    """Credential missing or mismatched."""
    model_config = ConfigDict(frozen=True)

    outcome: Literal["rejected"] = "rejected"
    reason: RejectionReason = Field(..., description="Why the request was rejected")


ValidationResult = Union[Authorized, Rejected]


# ============================================================================
# Response Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Body of every locally generated error response."""
    error: str = Field(..., description="Error type or code")
    message: str = Field(..., description="Human-readable error message")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    upstream: Optional[str] = Field(None, description="Configured upstream base URL")
