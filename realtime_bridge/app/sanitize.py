"""Output redaction for model-generated text.

Rules are stored with JavaScript-style regex flags and replacement tokens
because the admin tooling authors them that way. ``compile_rules`` maps them to
``re`` patterns once; ``Sanitizer`` holds the compiled tuple and swaps it
wholesale on reload so readers never see a partially built rule set.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

_LOGGER = logging.getLogger(__name__)

_OUTPUT_DIRECTIONS = frozenset({"out", "both"})
_FLAG_MAP = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
}
_NAMED_GROUP = re.compile(r"\(\?<(?=[A-Za-z_])")
_REPLACEMENT_TOKEN = re.compile(r"\$(\$|&|\d{1,2}|<[A-Za-z_][A-Za-z0-9_]*>)")


@dataclass(frozen=True, slots=True)
class SanitizationRule:
    """Redaction rule as stored.

    Attributes:
        pattern: Regular expression source.
        flags: JavaScript-style flag letters; ``g`` replaces every match.
        replacement: Replacement text; ``$1``, ``$&`` and ``$<name>`` tokens
            refer to captured groups.
        direction: ``in``, ``out`` or ``both``.
    """

    pattern: str
    flags: str = "g"
    replacement: str = ""
    direction: str = "out"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> SanitizationRule:
        return cls(
            pattern=str(data.get("pattern") or ""),
            flags=str(data.get("flags") or "g"),
            replacement=str(data.get("replacement") or ""),
            direction=str(data.get("direction") or "out"),
        )


@dataclass(frozen=True, slots=True)
class CompiledRule:
    regex: re.Pattern[str]
    replacement: str
    count: int


def _translate_replacement(replacement: str) -> str:
    """Converts JavaScript replacement tokens into ``re.sub`` syntax."""
    escaped = replacement.replace("\\", "\\\\")

    def _swap(match: re.Match[str]) -> str:
        token = match.group(1)
        if token == "$":
            return "$"
        if token == "&":
            return r"\g<0>"
        if token.startswith("<"):
            return rf"\g{token}"
        return rf"\g<{int(token)}>"

    return _REPLACEMENT_TOKEN.sub(_swap, escaped)


def compile_rule(rule: SanitizationRule) -> CompiledRule:
    """Compiles one rule.

    Raises:
        re.error: If the pattern is not a valid regular expression.
        ValueError: If the pattern is empty.
    """
    if not rule.pattern:
        raise ValueError("Sanitization rule pattern is empty")
    flags = 0
    for letter in rule.flags:
        flags |= _FLAG_MAP.get(letter, 0)
    source = _NAMED_GROUP.sub("(?P<", rule.pattern)
    return CompiledRule(
        regex=re.compile(source, flags),
        replacement=_translate_replacement(rule.replacement),
        count=0 if "g" in rule.flags else 1,
    )


def compile_rules(rules: Iterable[SanitizationRule]) -> tuple[CompiledRule, ...]:
    """Compiles output-direction rules, skipping invalid ones with a warning."""
    compiled: list[CompiledRule] = []
    for rule in rules:
        if rule.direction not in _OUTPUT_DIRECTIONS:
            continue
        try:
            compiled.append(compile_rule(rule))
        except (re.error, ValueError) as exc:
            _LOGGER.warning(
                "Skipping invalid sanitization rule.",
                extra={"pattern": rule.pattern, "error": str(exc)},
            )
    return tuple(compiled)


def load_rules_from_file(path: str | Path) -> list[SanitizationRule]:
    """Reads rules from a JSON file holding a list or ``{"rules": [...]}``.

    Missing files yield an empty list.
    """
    file_path = Path(path)
    if not file_path.exists():
        _LOGGER.debug("Sanitization rule file not found.", extra={"path": str(file_path)})
        return []
    payload = json.loads(file_path.read_text(encoding="utf-8"))
    entries = payload.get("rules", []) if isinstance(payload, dict) else payload
    return [SanitizationRule.from_mapping(entry) for entry in entries if isinstance(entry, dict)]


class Sanitizer:
    """Applies the current compiled rule set to outbound text."""

    def __init__(self, rules: Iterable[SanitizationRule] = ()) -> None:
        self._compiled: tuple[CompiledRule, ...] = compile_rules(rules)

    @property
    def rule_count(self) -> int:
        return len(self._compiled)

    def set_rules(self, rules: Iterable[SanitizationRule]) -> None:
        """Compiles and swaps in a new rule set."""
        compiled = compile_rules(rules)
        self._compiled = compiled
        _LOGGER.debug("Sanitization rules swapped.", extra={"rule_count": len(compiled)})

    def sanitize(self, text: str) -> str:
        if not text:
            return text
        result = text
        for rule in self._compiled:
            result = rule.regex.sub(rule.replacement, result, count=rule.count)
        return result
