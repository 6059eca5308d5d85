"""Rule registry."""

from typing import Optional

from dualscan.analyzers.base import (
    DetectionContext,
    DetectionStrategy,
    Finding,
    RuleModule,
    Severity,
    SourceUnit,
    StrategySource,
    StructuralStrategy,
    TextualStrategy,
)
from dualscan.analyzers.config_analyzer import HardcodedConfigRule
from dualscan.analyzers.cookie_analyzer import HttpOnlyCookieRule, SameSiteCookieRule, SecureCookieRule
from dualscan.analyzers.instantiation_analyzer import DirectInstantiationRule
from dualscan.analyzers.retry_analyzer import RetryLogicRule
from dualscan.services.rule_config_service import RuleConfigStore


def default_rules(config_store: Optional[RuleConfigStore] = None) -> list[RuleModule]:
    """One instance of every built-in rule."""
    return [
        RetryLogicRule(config_store=config_store),
        SecureCookieRule(),
        HttpOnlyCookieRule(),
        SameSiteCookieRule(),
        DirectInstantiationRule(),
        HardcodedConfigRule(),
    ]


__all__ = [
    "DetectionContext",
    "DetectionStrategy",
    "Finding",
    "RuleModule",
    "Severity",
    "SourceUnit",
    "StrategySource",
    "StructuralStrategy",
    "TextualStrategy",
    "HardcodedConfigRule",
    "HttpOnlyCookieRule",
    "SameSiteCookieRule",
    "SecureCookieRule",
    "DirectInstantiationRule",
    "RetryLogicRule",
    "default_rules",
]
