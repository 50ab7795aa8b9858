"""
Opportunistic field recovery from arbitrary JSON payloads.

Item pages load their data through API calls whose shapes change often.
Rather than hard-coding paths, a visitor walks the JSON value tree
breadth-first and applies an ordered rule table. Each rule names the
field it fills, which keys it matches, and how a value is validated; the
first accepted value per field wins, so shallower keys take precedence.
"""

from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from makergrade.extraction.metrics_text import METRIC_MAX, valid_author

JsonValue = None | bool | int | float | str | list[Any] | dict[str, Any]


@dataclass(frozen=True)
class RecoveryRule:
    """Maps matching keys to a field.

    Attributes:
        field: Field the rule fills
        matches: Predicate on the lowercased key
        accept: Returns the normalized value, or None to reject it
    """

    field: str
    matches: Callable[[str], bool]
    accept: Callable[[JsonValue], Any]


def _download_count(value: JsonValue) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if 0 < value < METRIC_MAX:
        return int(value)
    return None


def _author_name(value: JsonValue) -> str | None:
    if not isinstance(value, str):
        return None
    return valid_author(value)


def _is_author_key(key: str) -> bool:
    return key == "author" or "authorname" in key or "username" in key


DEFAULT_RULES: tuple[RecoveryRule, ...] = (
    RecoveryRule("downloads", lambda key: "download" in key, _download_count),
    RecoveryRule("author", _is_author_key, _author_name),
)


class FieldRecovery:
    """Accumulates recovered fields across any number of payloads."""

    def __init__(self, rules: Iterable[RecoveryRule] = DEFAULT_RULES):
        self.rules = tuple(rules)
        self.found: dict[str, Any] = {}

    @property
    def complete(self) -> bool:
        return all(rule.field in self.found for rule in self.rules)

    def get(self, field: str) -> Any:
        return self.found.get(field)

    def visit(self, payload: JsonValue) -> None:
        """Walk one payload and record the first accepted value per field."""
        pending: deque[JsonValue] = deque([payload])
        while pending and not self.complete:
            node = pending.popleft()
            if isinstance(node, list):
                pending.extend(node)
            elif isinstance(node, dict):
                for key, value in node.items():
                    self._apply_rules(str(key).lower(), value)
                    if isinstance(value, (dict, list)):
                        pending.append(value)

    def _apply_rules(self, key: str, value: JsonValue) -> None:
        for rule in self.rules:
            if rule.field in self.found or not rule.matches(key):
                continue
            accepted = rule.accept(value)
            if accepted is not None:
                self.found[rule.field] = accepted


def recover_fields(
    payloads: Iterable[JsonValue],
    rules: Iterable[RecoveryRule] = DEFAULT_RULES,
) -> dict[str, Any]:
    """Run a fresh visitor over several payloads and return what it found."""
    recovery = FieldRecovery(rules)
    for payload in payloads:
        recovery.visit(payload)
    return dict(recovery.found)
