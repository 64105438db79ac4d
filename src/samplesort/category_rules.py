"""Keyword category rules.

Categories are configured either as grouped ``main_categories``::

    {
      "main_categories": [
        {"name": "Drums", "categories": [
            {"name": "Kick", "keywords": ["kick", "bd"]},
            {"name": "Snare", "keywords": ["snare"], "match_all": false}
        ]}
      ]
    }

or as a legacy flat mapping ``{"categories": {"Kick": ["kick"]}}``.
Both are flattened into one ordered :class:`CompiledRules` value per run.
Order is significant: the first matching rule wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

_SEPARATORS_RE = re.compile(r"[-_]+")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_string(text: object) -> str:
    """Lowercase, treat ``-``/``_`` as spaces and collapse whitespace."""
    s = str(text if text is not None else "").lower()
    s = _SEPARATORS_RE.sub(" ", s)
    return _WHITESPACE_RE.sub(" ", s).strip()


def normalize_keywords(values: Any) -> List[str]:
    if not isinstance(values, (list, tuple)):
        return []
    out: List[str] = []
    for value in values:
        token = str(value).strip()
        if token:
            out.append(token)
    return out


@dataclass(frozen=True)
class CategoryRule:
    main_group: str
    category: str
    keywords: Tuple[str, ...] = ()
    match_all: bool = False
    _needles: Tuple[str, ...] = field(init=False, repr=False, compare=False, default=())

    def __post_init__(self) -> None:
        needles = tuple(n for n in (normalize_string(k) for k in self.keywords) if n)
        object.__setattr__(self, "_needles", needles)

    def matches(self, haystack: str) -> bool:
        """Match against an already-normalized haystack."""
        if not self._needles:
            return False
        if self.match_all:
            return all(n in haystack for n in self._needles)
        return any(n in haystack for n in self._needles)

    @property
    def relative_dir(self) -> str:
        if self.main_group:
            return f"{self.main_group}/{self.category}"
        return self.category


@dataclass(frozen=True)
class CompiledRules:
    rules: Tuple[CategoryRule, ...] = ()

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self):
        return iter(self.rules)

    def first_match(self, text: str) -> Optional[CategoryRule]:
        haystack = normalize_string(text)
        if not haystack:
            return None
        for rule in self.rules:
            if rule.matches(haystack):
                return rule
        return None


def _rules_from_main_categories(groups: Iterable[Any]) -> List[CategoryRule]:
    out: List[CategoryRule] = []
    for group in groups:
        if not isinstance(group, dict):
            continue
        main = str(group.get("name") or "").strip()
        for cat in group.get("categories") or []:
            if not isinstance(cat, dict):
                continue
            name = str(cat.get("name") or "").strip()
            if not name:
                continue
            out.append(
                CategoryRule(
                    main_group=main,
                    category=name,
                    keywords=tuple(normalize_keywords(cat.get("keywords"))),
                    match_all=bool(cat.get("match_all", False)),
                )
            )
    return out


def compile_rules(config: Dict[str, Any]) -> CompiledRules:
    """Flatten the configured category structure, preserving order."""
    groups = config.get("main_categories")
    if isinstance(groups, list) and groups:
        return CompiledRules(tuple(_rules_from_main_categories(groups)))

    flat = config.get("categories") or {}
    rules: List[CategoryRule] = []
    if isinstance(flat, dict):
        for name, keywords in flat.items():
            label = str(name).strip()
            if label:
                rules.append(CategoryRule("", label, tuple(normalize_keywords(keywords))))
    return CompiledRules(tuple(rules))
