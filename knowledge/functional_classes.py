# functional-class registry: medication / supplement name -> drug class
# strict lookup on the full normalized name, no substring or fuzzy matching

from __future__ import annotations

from knowledge.snapshot import FunctionalClass
from knowledge.taxonomy import normalize_token


class FunctionalRegistry:
    def __init__(self, classes: tuple[FunctionalClass, ...], version: str | None = None) -> None:
        self.version = version
        self._classes: dict[str, FunctionalClass] = {c.key: c for c in classes}
        self._term_index: dict[str, list[str]] = {}
        for functional_class in classes:
            for term in functional_class.terms:
                keys = self._term_index.setdefault(normalize_token(term), [])
                if functional_class.key not in keys:
                    keys.append(functional_class.key)

    @property
    def keys(self) -> list[str]:
        return sorted(self._classes)

    def get(self, class_key: str) -> FunctionalClass | None:
        return self._classes.get(class_key)

    def label_for(self, class_key: str) -> str:
        functional_class = self._classes.get(class_key)
        return functional_class.label if functional_class else class_key

    def match_functional_classes(self, name: str | None) -> list[str]:
        return sorted(self._term_index.get(normalize_token(name), ()))

    def shared_classes(self, left: str | None, right: str | None) -> list[str]:
        right_classes = set(self.match_functional_classes(right))
        return [key for key in self.match_functional_classes(left) if key in right_classes]
