"""Finding record schemas."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class FindingRecord(BaseModel):
    """Flat, serializable form of a finding."""

    model_config = ConfigDict(populate_by_name=True)

    rule_id: str = Field(alias="ruleId")
    severity: str
    file: str
    line: int
    column: int
    message: str
    category: str
    suggestion: Optional[str] = None
    source: str

    @classmethod
    def from_finding(cls, finding) -> "FindingRecord":
        return cls(
            rule_id=finding.rule_id,
            severity=finding.severity.value,
            file=finding.file,
            line=finding.line,
            column=finding.column,
            message=finding.message,
            category=finding.category,
            suggestion=finding.suggestion,
            source=finding.strategy_source.value,
        )


class DiagnosticRecord(BaseModel):
    """Flat form of a diagnostic."""

    model_config = ConfigDict(populate_by_name=True)

    kind: str
    level: str
    message: str
    path: Optional[str] = None
    rule_id: Optional[str] = Field(default=None, alias="ruleId")
