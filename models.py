from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional

class Tone(BaseModel):
    expected: Optional[str] = None
    heard: Optional[str] = None
    match: Optional[bool] = None

class Verdict(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # "pass" is a keyword, exposed through the alias
    passed: bool = Field(default=False, alias="pass")
    score: float = Field(default=0.0, ge=0.0, le=1.0)
    tone: Optional[Tone] = None
    hint: Optional[str] = Field(default=None, max_length=120)

class ZhEvidence(BaseModel):
    mode: str  # "singleChar" | "singlePinyin"
    input: str
    bases: List[str]
    homophones: List[str]
    toneLabel: Optional[str] = None

class EnEvidence(BaseModel):
    input: str
    homophones: List[str]

class RecognitionResult(BaseModel):
    candidates: List[str] = Field(default_factory=list)
    provider_used: str
    error: Optional[str] = None

class Timings(BaseModel):
    asr_ms: int
    judge_ms: int
    total_ms: int

class GradeResponse(Verdict):
    transcriptTop: str = ""
    candidates: List[str] = Field(default_factory=list)
    zhAugment: Optional[ZhEvidence] = None
    enHomophones: Optional[EnEvidence] = None
    timings: Timings
    provider: str

class AssessResponse(Verdict):
    provider: str = "azure-assess"

class ErrorResponse(BaseModel):
    error: str
    diagnostics: Optional[Dict[str, Any]] = None
