"""Run Record — one finished run, as kept by the run history."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class FinishReason(str, Enum):
    """Why a run (or a game) ended."""

    OK = "ok"
    ERROR = "error"
    DIED = "died"
    CHICKEN = "chicken"
    MERC_CHICKEN = "merc_chicken"
    EMERGENCY_EXIT = "emergency_exit"


class RunRecord(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    session: str
    run_name: str
    reason: FinishReason
    duration_seconds: float
    error: Optional[str] = None
    finished_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Chaining
    signature: str = ""                         # SHA-256 of this record
    prior_record_hash: Optional[str] = None
