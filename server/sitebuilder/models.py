from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional


class ChatMessage(BaseModel):
    role: str
    content: str = ""


class GenerateRequest(BaseModel):
    messages: List[ChatMessage]
    model: Optional[str] = None
    project_id: Optional[str] = None
    options: Optional[Dict[str, Any]] = {}


class GenerationRecord(BaseModel):
    content: str = ""
    done: bool = False
    prompt_eval_count: Optional[int] = None
    eval_count: Optional[int] = None


class CandidateFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    content: str
    language: str = "text"


class RejectedFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    reason: str


class ValidationVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: bool
    reason: Optional[str] = None
    files: List[CandidateFile] = Field(default_factory=list)
    rejected: List[RejectedFile] = Field(default_factory=list)
    required: List[str] = Field(default_factory=list)
    missing: List[str] = Field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "reason": self.reason,
            "files": [f.path for f in self.files],
            "rejected": [r.model_dump() for r in self.rejected],
            "missing": list(self.missing),
        }


class ModeFlags(BaseModel):
    model_config = ConfigDict(frozen=True)

    require_scaffold: bool = False
    require_files: bool = True
    has_existing_files: bool = False
    informational: bool = False


class PlanStep(BaseModel):
    id: str
    label: str
    done: bool = False


class FileMeta(BaseModel):
    path: str
    language: Optional[str] = None
    size: int = 0


class ProjectFile(BaseModel):
    path: str
    content: str
    language: Optional[str] = None
