"""Compiled category -> pattern rules matched against certificates."""

import json
import logging
import re
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional, Pattern, Tuple, Union

from .errors import ConstructionError

logger = logging.getLogger(__name__)


class RulePack:
    """
    Immutable mapping of category name to compiled regular expression.

    Categories are held in lexicographic order. When several categories
    match the same certificate the first one in that order wins.
    """

    __slots__ = ("_patterns", "_ordered")

    def __init__(self, patterns: Mapping[str, Pattern[str]]):
        ordered = tuple(sorted(patterns.items(), key=lambda item: item[0]))
        self._ordered: Tuple[Tuple[str, Pattern[str]], ...] = ordered
        self._patterns = MappingProxyType(dict(ordered))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, str]) -> "RulePack":
        """Compile every expression, failing on the first invalid one."""
        compiled = {}
        for category, expression in raw.items():
            if not isinstance(category, str) or not category:
                raise ConstructionError(f"Invalid rule category: {category!r}", str(category))
            if not isinstance(expression, str):
                raise ConstructionError(
                    f"Rule for category {category!r} must be a string, "
                    f"got {type(expression).__name__}",
                    category,
                )
            try:
                compiled[category] = re.compile(expression)
            except re.error as e:
                raise ConstructionError(
                    f"Error compiling regex for category {category!r}: {e}", category
                ) from e
        return cls(compiled)

    @classmethod
    def coerce(cls, rules: Union["RulePack", Mapping[str, str]]) -> "RulePack":
        if isinstance(rules, RulePack):
            return rules
        if not isinstance(rules, Mapping):
            raise ConstructionError(
                f"Rules must be a mapping of category to regex, got {type(rules).__name__}"
            )
        return cls.from_mapping(rules)

    @property
    def patterns(self) -> Mapping[str, Pattern[str]]:
        return self._patterns

    @property
    def categories(self) -> Tuple[str, ...]:
        return tuple(category for category, _ in self._ordered)

    def __len__(self) -> int:
        return len(self._ordered)

    def __iter__(self) -> Iterator[str]:
        return iter(self.categories)

    def __contains__(self, category: object) -> bool:
        return category in self._patterns

    def __repr__(self) -> str:
        return f"RulePack({list(self.categories)!r})"

    def match(self, value: str) -> Optional[str]:
        """Return the first category whose pattern matches `value`."""
        for category, pattern in self._ordered:
            if pattern.search(value):
                return category
        return None

    def match_any(self, values: Iterable[str]) -> Optional[str]:
        """
        Category-major matching over several candidate strings.

        For each category in order, every value is tried before moving on,
        so the tie-break stays on category order rather than value order.
        """
        candidates = [v for v in values if v]
        for category, pattern in self._ordered:
            for value in candidates:
                if pattern.search(value):
                    return category
        return None


def load_rules(path: Union[str, Path]) -> RulePack:
    """Load a JSON object of ``{"category": "regex"}`` and compile it."""
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConstructionError(f"Cannot read rules file {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise ConstructionError(f"Rules file {path} is not valid UTF-8: {e}") from e
    except json.JSONDecodeError as e:
        raise ConstructionError(f"Rules file {path} is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise ConstructionError(f"Rules file {path} must contain a JSON object")

    rules = RulePack.from_mapping(raw)
    logger.info(f"Loaded {len(rules)} rule(s) from {path}")
    return rules
