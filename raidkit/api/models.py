"""
Pydantic models for API responses.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class DriveStatus(str, Enum):
    """Scan-time drive status values."""

    AVAILABLE = "available"
    IN_RAID = "in-raid"
    MOUNTED = "mounted"
    MANAGED = "managed"
    SYSTEM = "system"


class Classification(str, Enum):
    """Array classification values."""

    SYSTEM = "SYSTEM"
    DATA = "DATA"


# Drive Models


class DriveInfo(BaseModel):
    """A scanned physical disk."""

    path: str = Field(..., description="Device path (e.g., /dev/sdb)")
    name: str
    size_bytes: int = Field(..., ge=0)
    size: str = Field(..., description="Human readable size (e.g., 1.8TB)")
    model: str = "unknown"
    serial: str = "unknown"
    rotational: bool = False
    status: DriveStatus

    @field_validator("path")
    def validate_path(cls, v: str) -> str:
        if not v.startswith("/dev/"):
            raise ValueError("Device path must start with /dev/")
        return v


# Plan Models


class ArrayLayoutInfo(BaseModel):
    """One array of a plan."""

    name: str
    scheme: str
    title: str
    group: str
    devices: List[str]
    spares: List[str] = Field(default_factory=list)
    usable_bytes: int = Field(..., ge=0)
    usable: str
    fault_tolerance: int = Field(..., ge=0)


class PlanInfo(BaseModel):
    """A proposed layout."""

    plan_id: str = Field(..., description="Plan id (e.g., raid10-1.8TB, dual-mirror)")
    kind: str
    description: str
    rationale: str = ""
    arrays: List[ArrayLayoutInfo]
    groups: List[str]
    device_count: int = Field(..., ge=0)
    usable_bytes: int = Field(..., ge=0)
    usable: str
    protected_bytes: int = Field(..., ge=0)
    fault_tolerance: int = Field(..., ge=0)
    notice: Optional[str] = None
    alternatives: List[str] = Field(default_factory=list)


# Array Models


class ArrayInfo(BaseModel):
    """An existing md array with its classification."""

    name: str
    device: str
    alias: Optional[str] = None
    level: str
    active: bool
    size_bytes: int = Field(0, ge=0)
    members: List[str]
    mounts: List[str]
    classification: Classification
    reason: str


# Response envelopes


class DriveListResponse(BaseModel):
    """Response model for listing drives."""

    request_id: str
    status: str
    data: dict


class PlanListResponse(BaseModel):
    """Response model for listing plans."""

    request_id: str
    status: str
    data: dict


class PlanResponse(BaseModel):
    """Response model for a single plan."""

    request_id: str
    status: str
    data: dict


class ArrayListResponse(BaseModel):
    """Response model for listing arrays."""

    request_id: str
    status: str
    data: dict


class ErrorResponse(BaseModel):
    """Error response model."""

    request_id: str
    status: str = "error"
    error: dict
