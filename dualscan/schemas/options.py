"""Run option schemas."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class RuleMode(str, Enum):
    """Whether the textual strategy supplements or only backs up the structural one."""

    SUPPLEMENT = "supplement"
    PRIMARY_ONLY = "primary-only"


class RuleOptions(BaseModel):
    """Per-rule options."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = True
    mode: RuleMode = RuleMode.SUPPLEMENT
    exclude: list[str] = Field(default_factory=list)
    allow: list[str] = Field(default_factory=list)


class SessionOptions(BaseModel):
    """Options map for one analysis run."""

    model_config = ConfigDict(extra="ignore")

    verbose: bool = False
    rules: dict[str, dict[str, Any]] = Field(default_factory=dict)


# key -> list of function names, e.g. {"knownRetryFunctions": ["withRetry"]}
RuleConfigFile = TypeAdapter(dict[str, list[str]])
