"""Pydantic models for transcoding jobs.

A job is created by the planner, mutated only by whichever component owns it
at the time, and dropped once its terminal event has been published.
"""

import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..models import AssetRef, Position, PreviewOverride, Role, Trim


class JobStatus(str, Enum):
    """Job processing states.

    State transitions:
        pending → waiting       (pushed onto the task queue)
        waiting → processing    (queue admits it under the concurrency cap)
        processing → completed  (ffmpeg exited 0 and the output was committed)
        processing → failed     (input, process or filesystem error)
        * → cancelled           (caller cancelled the job)
    """

    PENDING = "pending"
    WAITING = "waiting"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class JobConfig(BaseModel):
    """Mode-specific parameters of one job."""

    orientation: Optional[str] = Field(default=None, description="Canvas orientation")
    positions: Dict[Role, Position] = Field(
        default_factory=dict, description="Layer rectangles keyed by role"
    )
    trims: Dict[Role, Trim] = Field(default_factory=dict, description="Input trims keyed by role")
    quality: Optional[str] = Field(default=None, description="Quality preset override")
    preview: Optional[PreviewOverride] = Field(default=None, description="Preview override")
    width: Optional[int] = Field(default=None, gt=0, description="Resize target width")
    height: Optional[int] = Field(default=None, gt=0, description="Resize target height")
    suffix: str = Field(default="", description="Appended to the output base name")
    blur_amount: Optional[int] = Field(default=None, ge=0, description="Resize blur radius")
    base_name: Optional[str] = Field(default=None, description="Output name before sanitizing")
    extra: Dict[str, Any] = Field(default_factory=dict, description="Free-form mode options")


class Job(BaseModel):
    """One unit of transcoding work: N input assets and a config, one output file."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Unique per run")
    index: int = Field(default=0, ge=0, description="Position in the batch (event key)")
    mode: str = Field(..., description="stitch | merge | resize | image")
    status: JobStatus = Field(default=JobStatus.PENDING, description="Current job state")
    inputs: List[AssetRef] = Field(default_factory=list, description="Ordered input assets")
    config: JobConfig = Field(default_factory=JobConfig)
    output_dir: str = Field(..., description="Shared destination directory")

    class Config:
        """Pydantic configuration."""

        use_enum_values = True

    def asset(self, role: Role) -> Optional[AssetRef]:
        """First input playing ``role``, if any."""
        for ref in self.inputs:
            if ref.role == role:
                return ref
        return None

    def path_of(self, role: Role) -> Optional[str]:
        ref = self.asset(role)
        return ref.path if ref else None
