"""Rule tree data model.

Rules are pydantic models so that a rule tree can be written in Python or
deserialized from the YAML configuration with the same validation.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

# A single value, a list of values, or the "*" wildcard
MatchOption = str | list[str]

WILDCARD = "*"

TARGET_FIELDS = ("protocol", "host", "port", "path", "method", "headers")


class TargetOverride(BaseModel):
    """Fields a matching rule instructs the rewrite engine to change.

    A field counts as present only when it was given a non-null value; the
    set of present fields drives both merging and rewriting.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    protocol: str | None = Field(default=None, description="Replacement URL scheme")
    host: str | None = Field(default=None, description="Host template, may contain :name")
    port: int | None = Field(default=None, ge=1, le=65535, description="Replacement port")
    path: str | dict[str, str] | None = Field(
        default=None, description="Path template or ordered regex -> replacement rules"
    )
    method: str | None = Field(default=None, description="Replacement HTTP method")
    headers: dict[str, str | None] | None = Field(
        default=None, description="Header name -> value, null removes the header"
    )

    _path_rules: List[Tuple[re.Pattern, str]] = PrivateAttr(default_factory=list)

    @field_validator("path")
    @classmethod
    def validate_path_rules(cls, v: str | dict[str, str] | None) -> str | dict[str, str] | None:
        """Validate that every path rewrite key is a valid regex."""
        if isinstance(v, dict):
            for pattern in v:
                try:
                    re.compile(pattern)
                except re.error as e:
                    raise ValueError(f"Invalid path rewrite pattern {pattern!r}: {e}") from e
        return v

    @field_validator("method")
    @classmethod
    def normalize_method(cls, v: str | None) -> str | None:
        return v.upper() if v is not None else v

    def model_post_init(self, __context: Any) -> None:
        if isinstance(self.path, dict):
            self._path_rules = [
                (re.compile(pattern), replacement) for pattern, replacement in self.path.items()
            ]

    @property
    def path_rules(self) -> List[Tuple[re.Pattern, str]]:
        """Compiled path rewrite rules in declaration order."""
        return self._path_rules

    @property
    def present_fields(self) -> Tuple[str, ...]:
        return tuple(name for name in TARGET_FIELDS if getattr(self, name) is not None)

    def has(self, name: str) -> bool:
        return getattr(self, name) is not None

    def merge(self, other: Optional["TargetOverride"]) -> "TargetOverride":
        """Shallow-merge another override over this one.

        Fields present on ``other`` win; all other fields pass through.

        Args:
            other: Override from a nested scope

        Returns:
            New TargetOverride instance
        """
        if other is None or not other.present_fields:
            return self
        values = {name: getattr(self, name) for name in self.present_fields}
        values.update({name: getattr(other, name) for name in other.present_fields})
        return TargetOverride(**values)


class Rule(BaseModel):
    """One node of the matcher tree.

    ``match`` is the ordered list of nested rules. ``None`` means the rule is a
    leaf; an empty list means the rule can never match.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    method: MatchOption | None = Field(default=None, description="Verb, list of verbs, or *")
    protocol: MatchOption | None = Field(default=None, description="Scheme, list, or *")
    host: str | None = Field(default=None, description="Host pattern")
    port: int | None = Field(default=None, ge=1, le=65535, description="Required port")
    path: str | None = Field(default=None, description="Path pattern")
    target: TargetOverride | None = Field(default=None, description="Rewrite override")
    match: list["Rule"] | None = Field(default=None, description="Nested rules")

    @classmethod
    def coerce(cls, rule: "Rule | Mapping[str, Any]") -> "Rule":
        """Accept either a Rule or a plain mapping in rule-document form."""
        if isinstance(rule, Rule):
            return rule
        return cls.model_validate(rule)


@dataclass(frozen=True)
class MatchResult:
    """Outcome of a successful rule evaluation."""

    target: TargetOverride = field(default_factory=TargetOverride)
    params: Dict[str, str] = field(default_factory=dict)
