"""Per-rule configuration files.

Each rule may keep a small JSON file mapping a key to a list of function
names (for example the retry helpers a project already centralizes on). The
file is read once when the rule is created and written with defaults when
missing. None of this is required: a missing, unreadable or malformed file
falls back to the built-in defaults.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from pydantic import ValidationError

from dualscan.schemas.options import RuleConfigFile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleConfig:
    """Loaded configuration for one rule."""

    values: dict[str, list[str]]
    path: Optional[str] = None
    errors: tuple[str, ...] = field(default_factory=tuple)

    def get(self, key: str) -> list[str]:
        return list(self.values.get(key, []))


class RuleConfigStore:
    """Reads and seeds rule config files under one directory."""

    def __init__(self, config_dir: Optional[str] = None):
        self.config_dir = config_dir

    def path_for(self, rule_id: str) -> Optional[str]:
        if not self.config_dir:
            return None
        return os.path.join(self.config_dir, f"{rule_id.lower()}.json")

    def load(self, rule_id: str, defaults: dict[str, list[str]]) -> RuleConfig:
        """Load a rule's config, falling back to ``defaults`` on any problem."""
        path = self.path_for(rule_id)
        if path is None:
            return RuleConfig(values=dict(defaults))

        if not os.path.exists(path):
            self._write_defaults(path, defaults)
            return RuleConfig(values=dict(defaults), path=path)

        try:
            with open(path, "r", encoding="utf-8") as handle:
                loaded = RuleConfigFile.validate_python(json.load(handle))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            message = f"Malformed rule config {path}, using defaults: {e}"
            logger.warning(message)
            return RuleConfig(values=dict(defaults), path=path, errors=(message,))

        values = dict(defaults)
        values.update(loaded)
        return RuleConfig(values=values, path=path)

    def _write_defaults(self, path: str, defaults: dict[str, list[str]]):
        try:
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
            with open(path, "w", encoding="utf-8") as handle:
                json.dump(defaults, handle, indent=2)
            logger.info(f"Wrote default rule config to {path}")
        except OSError as e:
            logger.warning(f"Could not write rule config {path}: {e}")
