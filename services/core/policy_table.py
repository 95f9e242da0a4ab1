"""
ACTION POLICY TABLE

Static configuration supplied by the calling system:
    action_code -> (action_category, required_trust_level, risk_level)

The engine never owns or edits this table; it only resolves entries.
An action code without an entry is UnknownAction - it is never defaulted
to any trust level.

Usage:
    table = PolicyTable.from_yaml("config/action_policies.yaml")
    policy = table.resolve("FIX_CANONICAL")
    policy.required_trust_level  # 2

YAML shape:
    policies:
      - action_code: FIX_CANONICAL
        action_category: tech-seo
        required_trust_level: 2
        risk_level: low
        description: Rewrite incorrect canonical tags
"""
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from exceptions import PolicyConfigurationError, UnknownAction
from logging_config import get_logger
from schemas import RiskLevel
from trust_config import MAX_TRUST_LEVEL, MIN_TRUST_LEVEL

logger = get_logger(__name__)


class ActionPolicy(BaseModel):
    """Policy entry for one action code"""
    action_code: str = Field(min_length=1)
    action_category: str = Field(min_length=1)
    required_trust_level: int = Field(ge=MIN_TRUST_LEVEL, le=MAX_TRUST_LEVEL)
    risk_level: RiskLevel = RiskLevel.MEDIUM
    description: str = ""


class PolicyTable:
    """Immutable lookup of action policies keyed by action code."""

    def __init__(self, policies: Iterable[ActionPolicy], source: str = "<memory>"):
        self._source = source
        self._policies: Dict[str, ActionPolicy] = {}
        for policy in policies:
            if policy.action_code in self._policies:
                raise PolicyConfigurationError(
                    f"duplicate action_code {policy.action_code!r}", source=source
                )
            self._policies[policy.action_code] = policy

    @classmethod
    def from_entries(cls, entries: Iterable[Mapping[str, Any]], source: str = "<memory>") -> "PolicyTable":
        policies = []
        for index, entry in enumerate(entries):
            try:
                policies.append(ActionPolicy.model_validate(entry))
            except ValidationError as e:
                raise PolicyConfigurationError(
                    f"entry #{index}: {e.errors()[0]['msg']} ({e.errors()[0]['loc']})",
                    source=source
                ) from e
        return cls(policies, source=source)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Mapping[str, Any]], source: str = "<memory>") -> "PolicyTable":
        """Build from {action_code: {action_category, required_trust_level, ...}}"""
        entries = [{"action_code": code, **dict(entry)} for code, entry in mapping.items()]
        return cls.from_entries(entries, source=source)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "PolicyTable":
        path = Path(path)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise PolicyConfigurationError(f"cannot read policy file: {e}", source=str(path)) from e

        entries = data.get("policies") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise PolicyConfigurationError("expected a top-level 'policies' list", source=str(path))

        table = cls.from_entries(entries, source=str(path))
        logger.info("action_policies_loaded", source=str(path), count=len(table))
        return table

    def resolve(self, action_code: str) -> ActionPolicy:
        """Return the policy for ``action_code`` or raise UnknownAction."""
        policy = self._policies.get(action_code)
        if policy is None:
            raise UnknownAction(action_code)
        return policy

    def get(self, action_code: str) -> Optional[ActionPolicy]:
        return self._policies.get(action_code)

    def categories(self) -> List[str]:
        return sorted({p.action_category for p in self._policies.values()})

    def __contains__(self, action_code: str) -> bool:
        return action_code in self._policies

    def __len__(self) -> int:
        return len(self._policies)
