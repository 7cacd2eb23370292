"""Scope filter model for selecting domains and domain controllers of a forest."""

import re
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

_DNS_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]([A-Za-z0-9_.-]{0,251}[A-Za-z0-9_])?$")


def _normalize_names(values: Optional[List[str]], kind: str) -> List[str]:
    """Strip, lower-case and de-duplicate names while keeping their order."""
    if values is None:
        return []

    normalized = []
    seen = set()
    for value in values:
        name = value.strip().rstrip(".").lower()
        if not name:
            continue
        if not _DNS_NAME_PATTERN.match(name):
            raise ValueError(
                f"Invalid {kind} name: {value}. Must be a DNS host or domain name."
            )
        if name not in seen:
            normalized.append(name)
            seen.add(name)
    return normalized


class ForestScopeFilter(BaseModel):
    """Include/exclude rules applied to the domain controllers of a forest.

    Attributes:
        include_domains: Only DCs of these domains are kept (empty = all domains)
        exclude_domains: DCs of these domains are removed after inclusion
        include_domain_controllers: Only these DCs are kept (empty = all DCs)
        exclude_domain_controllers: These DCs are removed after inclusion
        skip_rodc: Remove read-only domain controllers
    """

    include_domains: Optional[List[str]] = Field(default_factory=list)
    exclude_domains: Optional[List[str]] = Field(default_factory=list)
    include_domain_controllers: Optional[List[str]] = Field(default_factory=list)
    exclude_domain_controllers: Optional[List[str]] = Field(default_factory=list)
    skip_rodc: bool = False

    @model_validator(mode="before")
    @classmethod
    def convert_none_to_empty_list(cls, data: Any) -> Any:
        """Convert None values to empty lists before other validation."""
        if isinstance(data, dict):
            for key in (
                "include_domains",
                "exclude_domains",
                "include_domain_controllers",
                "exclude_domain_controllers",
            ):
                if data.get(key) is None:
                    data[key] = []
        return data

    @field_validator("include_domains", "exclude_domains")
    @classmethod
    def validate_domains(cls, v: Optional[List[str]]) -> List[str]:
        return _normalize_names(v, "domain")

    @field_validator("include_domain_controllers", "exclude_domain_controllers")
    @classmethod
    def validate_domain_controllers(cls, v: Optional[List[str]]) -> List[str]:
        return _normalize_names(v, "domain controller")

    def has_filters(self) -> bool:
        """Check if any filters are configured."""
        return bool(
            self.include_domains
            or self.exclude_domains
            or self.include_domain_controllers
            or self.exclude_domain_controllers
            or self.skip_rodc
        )

    def __str__(self) -> str:
        parts = []
        if self.include_domains:
            parts.append(f"include_domains={self.include_domains}")
        if self.exclude_domains:
            parts.append(f"exclude_domains={self.exclude_domains}")
        if self.include_domain_controllers:
            parts.append(f"include_dcs={self.include_domain_controllers}")
        if self.exclude_domain_controllers:
            parts.append(f"exclude_dcs={self.exclude_domain_controllers}")
        if self.skip_rodc:
            parts.append("skip_rodc=True")
        return f"ForestScopeFilter({', '.join(parts) or 'no filters'})"
