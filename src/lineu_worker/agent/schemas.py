"""Analysis result produced by the agent."""

from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ExceptionInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str | None = None
    message: str | None = None


class RootCause(BaseModel):
    model_config = ConfigDict(extra="allow")

    hypothesis: str | None = None
    confidence: str | None = None
    evidence: str | None = None


class Impact(BaseModel):
    model_config = ConfigDict(extra="allow")

    description: str | None = None
    scope: str | None = None


class Fix(BaseModel):
    model_config = ConfigDict(extra="allow")

    suggestion: str | None = None
    code_example: str | None = None
    files_to_modify: List[str] = Field(default_factory=list)

    @field_validator("files_to_modify", mode="before")
    @classmethod
    def none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class Prevention(BaseModel):
    model_config = ConfigDict(extra="allow")

    test_suggestion: str | None = None
    monitoring_suggestion: str | None = None


class CodeSnippet(BaseModel):
    model_config = ConfigDict(extra="allow")

    file: str | None = None
    lines: str | None = None
    code: str | None = None
    relevance: str | None = None


class Analysis(BaseModel):
    """Structured investigation result.

    Extra keys are kept so the stored analysis stays identical to what the agent
    returned. ``summary`` may be missing when the result was recovered by the
    lenient brace scan.
    """

    model_config = ConfigDict(extra="allow")

    category: str
    priority: str = "medium"
    summary: str | None = None
    exception: ExceptionInfo | None = None
    stack_trace_summary: str | None = None
    affected_files: List[str] = Field(default_factory=list)
    root_cause: RootCause | None = None
    impact: Impact | None = None
    fix: Fix | None = None
    prevention: Prevention | None = None
    investigation_log: List[str] = Field(default_factory=list)
    related_code_snippets: List[CodeSnippet] = Field(default_factory=list)
    suggested_team: str | None = None
    additional_context: str | None = None

    # Older prompt versions returned these flat keys
    root_cause_hypothesis: str | None = None
    suggested_fix: str | None = None
    investigation_steps: List[str] = Field(default_factory=list)
    related_code: str | None = None

    @field_validator("priority", mode="before")
    @classmethod
    def default_priority(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return "medium"
        return value

    @field_validator("suggested_team", mode="before")

    @classmethod
    def normalize_team(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lower() in ("", "null", "none"):
            return None
        return value.strip() if isinstance(value, str) else value

    @field_validator(
        "affected_files", "investigation_log", "investigation_steps", "related_code_snippets", mode="before"
    )
    @classmethod
    def none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def steps(self) -> List[str]:
        return self.investigation_log or self.investigation_steps
