from pydantic import BaseModel, ConfigDict
from typing import Optional, Dict, Any, List, Literal

JobStatus = Literal["pending", "running", "succeeded", "failed", "canceled"]

TERMINAL_STATUSES = frozenset({"succeeded", "failed", "canceled"})

# remote vocabulary -> JobStatus
_STATUS_ALIASES: Dict[str, JobStatus] = {
    "starting": "pending",
    "queued": "pending",
    "pending": "pending",
    "processing": "running",
    "running": "running",
    "succeeded": "succeeded",
    "success": "succeeded",
    "completed": "succeeded",
    "failed": "failed",
    "error": "failed",
    "canceled": "canceled",
    "cancelled": "canceled",
    "aborted": "canceled",
}


def normalize_status(raw: Any) -> Optional[JobStatus]:
    """Collapse a remote status string into a JobStatus, or None if unrecognised."""
    if not isinstance(raw, str):
        return None
    return _STATUS_ALIASES.get(raw.strip().lower())


def is_terminal(status: JobStatus) -> bool:
    return status in TERMINAL_STATUSES


class JobHandle(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    submitted_at: float


class JobOutcome(BaseModel):
    status: JobStatus
    result: Dict[str, Any] = {}
    timed_out: bool = False


class GenerateRequest(BaseModel):
    input: Optional[Dict[str, Any]] = None
    model: Optional[str] = None
    inline: bool = False


class MeshRequest(BaseModel):
    # anything besides imageUrl is forwarded as a job parameter
    model_config = ConfigDict(extra="allow")

    imageUrl: Optional[str] = None

    def extra_params(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class ChatRequest(BaseModel):
    messages: Optional[List[Any]] = None


class InlineOutput(BaseModel):
    id: Optional[str] = None
    output: str
    type: str


class ChatResponse(BaseModel):
    ok: bool
    output: Any = None
    error: Optional[str] = None
    detail: Any = None
