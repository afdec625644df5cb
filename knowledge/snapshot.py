# versioned, immutable knowledge base shapes
# a snapshot is built once per process (or once per replay side) and never mutated

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True)
class ParentCategory:
    key: str
    label: str
    children: tuple[str, ...]


@dataclass(frozen=True)
class CrossReactiveRelation:
    source: str
    related: tuple[str, ...]
    risk_modifier: int


@dataclass(frozen=True)
class FunctionalClass:
    key: str
    label: str
    terms: tuple[str, ...]
    examples: tuple[str, ...] = ()


def _frozen_mapping(value: Mapping | None) -> Mapping:
    return MappingProxyType(dict(value or {}))


@dataclass(frozen=True)
class KnowledgeSnapshot:
    version: str
    categories: tuple[ParentCategory, ...]
    severity: Mapping[str, int] = field(default_factory=dict)
    cross_reactive: tuple[CrossReactiveRelation, ...] = ()
    aliases: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    allowed_overlaps: tuple[tuple[str, str], ...] = ()
    functional_classes: tuple[FunctionalClass, ...] = ()
    registry_version: str | None = None

    def __post_init__(self) -> None:
        # read-only views so a shared snapshot cannot drift in place
        object.__setattr__(self, "severity", _frozen_mapping(self.severity))
        object.__setattr__(self, "aliases", _frozen_mapping(self.aliases))

    def category(self, key: str) -> ParentCategory | None:
        for category in self.categories:
            if category.key == key:
                return category
        return None
