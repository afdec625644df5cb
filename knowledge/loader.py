# knowledge base loader
# production uses the in-repo seed; replay/eval can point ALLERGEN_TAXONOMY_PATH or
# FUNCTIONAL_REGISTRY_PATH at a JSON snapshot instead
# any failure here is fatal: a wrong ontology version must never load silently

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, replace
from functools import lru_cache
from pathlib import Path
from typing import Any

from knowledge import seed
from knowledge.functional_classes import FunctionalRegistry
from knowledge.snapshot import (
    CrossReactiveRelation,
    FunctionalClass,
    KnowledgeSnapshot,
    ParentCategory,
)
from knowledge.taxonomy import UNKNOWN_CATEGORY_SEVERITY, Taxonomy

logger = logging.getLogger(__name__)


class KnowledgeLoadError(RuntimeError):
    pass


@dataclass(frozen=True)
class Knowledge:
    snapshot: KnowledgeSnapshot
    taxonomy: Taxonomy
    registry: FunctionalRegistry

    @property
    def taxonomy_version(self) -> str:
        return self.snapshot.version

    @property
    def registry_version(self) -> str | None:
        return self.snapshot.registry_version


def _categories_from(raw: dict[str, Any], source: str) -> tuple[ParentCategory, ...]:
    categories: list[ParentCategory] = []
    for key, entry in raw.items():
        if not isinstance(entry, dict):
            raise KnowledgeLoadError(f"{source}: taxonomy entry {key!r} must be an object")
        children = entry.get("children") or []
        if not isinstance(children, list):
            raise KnowledgeLoadError(f"{source}: taxonomy entry {key!r} children must be a list")
        categories.append(
            ParentCategory(
                key=str(key),
                label=str(entry.get("label") or key),
                children=tuple(str(child) for child in children),
            )
        )
    return tuple(categories)


def _relations_from(raw: Any) -> tuple[CrossReactiveRelation, ...]:
    if not isinstance(raw, list):
        return ()
    relations: list[CrossReactiveRelation] = []
    for row in raw:
        if not isinstance(row, dict) or not row.get("source"):
            continue
        relations.append(
            CrossReactiveRelation(
                source=str(row["source"]),
                related=tuple(str(term) for term in row.get("related") or []),
                risk_modifier=int(row.get("riskModifier") or 0),
            )
        )
    return tuple(relations)


def _functional_classes_from(raw: dict[str, Any]) -> tuple[FunctionalClass, ...]:
    classes: list[FunctionalClass] = []
    for key, entry in raw.items():
        if not isinstance(entry, dict):
            continue
        classes.append(
            FunctionalClass(
                key=str(key),
                label=str(entry.get("label") or key),
                terms=tuple(str(term) for term in entry.get("terms") or []),
                examples=tuple(str(term) for term in entry.get("examples") or []),
            )
        )
    return tuple(classes)


def _severity_with_defaults(categories: tuple[ParentCategory, ...], severity: dict[str, Any]) -> dict[str, int]:
    table = {str(key): int(value) for key, value in severity.items()}
    for category in categories:
        table.setdefault(category.key, UNKNOWN_CATEGORY_SEVERITY)
    return table


def default_snapshot() -> KnowledgeSnapshot:
    categories = _categories_from(seed.ALLERGEN_TAXONOMY, "seed")
    return KnowledgeSnapshot(
        version=seed.DEFAULT_TAXONOMY_VERSION,
        categories=categories,
        severity=_severity_with_defaults(categories, seed.ALLERGEN_SEVERITY),
        cross_reactive=_relations_from(seed.CROSS_REACTIVE_REGISTRY),
        aliases={key: tuple(values) for key, values in seed.ALIASES.items()},
        allowed_overlaps=tuple(tuple(pair) for pair in seed.ALLOWED_OVERLAPS),
        functional_classes=_functional_classes_from(seed.FUNCTIONAL_CLASS_REGISTRY),
        registry_version=seed.DEFAULT_REGISTRY_VERSION,
    )


def _read_json_object(path: str | Path, label: str) -> tuple[Path, dict[str, Any]]:
    abs_path = Path(path).expanduser().resolve()
    try:
        raw = abs_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise KnowledgeLoadError(f"{label}: failed to read {abs_path}: {exc}") from exc
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise KnowledgeLoadError(f"{label}: invalid JSON in {abs_path}: {exc}") from exc
    if not isinstance(parsed, dict):
        raise KnowledgeLoadError(f"{label}: expected object in {abs_path}")
    return abs_path, parsed


def _require_version(payload: dict[str, Any], key: str, label: str, abs_path: Path) -> str:
    version = payload.get(key)
    if not isinstance(version, str) or not version.strip():
        raise KnowledgeLoadError(f"{label}: missing {key!r} in {abs_path}")
    return version.strip()


def load_registry(path: str | Path) -> tuple[str, tuple[FunctionalClass, ...]]:
    abs_path, payload = _read_json_object(path, "load_registry")
    version = _require_version(payload, "version", "load_registry", abs_path)
    classes = payload.get("classes")
    if not isinstance(classes, dict):
        raise KnowledgeLoadError(f"load_registry: missing 'classes' object in {abs_path}")
    return version, _functional_classes_from(classes)


def load_snapshot(path: str | Path) -> KnowledgeSnapshot:
    """Load a taxonomy snapshot from a JSON file.

    Shape: ``{"version", "taxonomy", "severity", "crossReactive", "aliases",
    "allowedOverlaps", "registry"?, "registryVersion"?}``. When the file carries
    no registry, the in-repo functional registry is used.
    """
    abs_path, payload = _read_json_object(path, "load_snapshot")
    version = _require_version(payload, "version", "load_snapshot", abs_path)
    taxonomy = payload.get("taxonomy")
    if not isinstance(taxonomy, dict):
        raise KnowledgeLoadError(f"load_snapshot: missing 'taxonomy' object in {abs_path}")

    categories = _categories_from(taxonomy, f"load_snapshot({abs_path})")
    severity = payload.get("severity") if isinstance(payload.get("severity"), dict) else {}
    aliases = payload.get("aliases") if isinstance(payload.get("aliases"), dict) else {}
    overlaps = payload.get("allowedOverlaps") if isinstance(payload.get("allowedOverlaps"), list) else []

    registry = payload.get("registry")
    if isinstance(registry, dict):
        functional_classes = _functional_classes_from(registry)
        registry_version = _require_version(payload, "registryVersion", "load_snapshot", abs_path)
    else:
        functional_classes = _functional_classes_from(seed.FUNCTIONAL_CLASS_REGISTRY)
        registry_version = seed.DEFAULT_REGISTRY_VERSION

    return KnowledgeSnapshot(
        version=version,
        categories=categories,
        severity=_severity_with_defaults(categories, severity),
        cross_reactive=_relations_from(payload.get("crossReactive")),
        aliases={str(key): tuple(str(v) for v in values or []) for key, values in aliases.items()},
        allowed_overlaps=tuple(
            (str(pair[0]), str(pair[1])) for pair in overlaps if isinstance(pair, list) and len(pair) == 2
        ),
        functional_classes=functional_classes,
        registry_version=registry_version,
    )


def compile_knowledge(snapshot: KnowledgeSnapshot) -> Knowledge:
    return Knowledge(
        snapshot=snapshot,
        taxonomy=Taxonomy(snapshot),
        registry=FunctionalRegistry(snapshot.functional_classes, snapshot.registry_version),
    )


@lru_cache(maxsize=1)
def get_knowledge() -> Knowledge:
    taxonomy_path = os.getenv("ALLERGEN_TAXONOMY_PATH", "").strip()
    registry_path = os.getenv("FUNCTIONAL_REGISTRY_PATH", "").strip()

    snapshot = load_snapshot(taxonomy_path) if taxonomy_path else default_snapshot()
    if registry_path:
        registry_version, classes = load_registry(registry_path)
        snapshot = replace(snapshot, functional_classes=classes, registry_version=registry_version)

    logger.info(
        "loaded knowledge snapshot taxonomy=%s registry=%s source=%s",
        snapshot.version,
        snapshot.registry_version,
        taxonomy_path or "seed",
    )
    return compile_knowledge(snapshot)
