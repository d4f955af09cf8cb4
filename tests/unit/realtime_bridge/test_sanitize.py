from __future__ import annotations

import json
from pathlib import Path

from realtime_bridge.app.sanitize import (
    SanitizationRule,
    Sanitizer,
    compile_rules,
    load_rules_from_file,
)

PHONE_RULE = SanitizationRule(pattern=r"\b\d{3}-\d{4}\b", flags="g", replacement="[redacted]")


def test_sanitizer_redacts_every_match_for_global_rules() -> None:
    sanitizer = Sanitizer([PHONE_RULE])

    assert sanitizer.sanitize("Call 555-1234 or 555-9876 today") == "Call [redacted] or [redacted] today"


def test_phone_pattern_without_word_boundaries_redacts_inline_number() -> None:
    sanitizer = Sanitizer([SanitizationRule(pattern="\\d{3}-\\d{4}", replacement="[redacted]")])

    redacted = sanitizer.sanitize("call 555-1234 now")

    assert redacted == "call [redacted] now"
    assert sanitizer.sanitize(redacted) == redacted


def test_sanitizer_is_idempotent_for_redacted_output() -> None:
    sanitizer = Sanitizer([PHONE_RULE])

    once = sanitizer.sanitize("Call 555-1234")

    assert sanitizer.sanitize(once) == once


def test_rule_without_global_flag_replaces_first_match_only() -> None:
    sanitizer = Sanitizer([SanitizationRule(pattern=r"\d{3}-\d{4}", flags="", replacement="X")])

    assert sanitizer.sanitize("555-1234 555-9876") == "X 555-9876"


def test_case_insensitive_flag_is_honored() -> None:
    sanitizer = Sanitizer([SanitizationRule(pattern="secret", flags="gi", replacement="***")])

    assert sanitizer.sanitize("Secret and SECRET") == "*** and ***"


def test_replacement_tokens_refer_to_captured_groups() -> None:
    sanitizer = Sanitizer(
        [
            SanitizationRule(pattern=r"(?<area>\d{3})-(\d{4})", replacement="$<area>-****"),
            SanitizationRule(pattern=r"code (\w+)", replacement="[$1] $$ <$&>"),
        ]
    )

    assert sanitizer.sanitize("555-1234") == "555-****"
    assert sanitizer.sanitize("code ab12") == "[ab12] $ <code ab12>"


def test_invalid_and_inbound_rules_are_skipped() -> None:
    compiled = compile_rules(
        [
            SanitizationRule(pattern="("),
            SanitizationRule(pattern=""),
            SanitizationRule(pattern="hello", direction="in"),
            SanitizationRule(pattern="world", direction="both", replacement="planet"),
        ]
    )

    assert len(compiled) == 1
    assert compiled[0].regex.pattern == "world"


def test_set_rules_swaps_rule_set() -> None:
    sanitizer = Sanitizer([PHONE_RULE])

    sanitizer.set_rules([SanitizationRule(pattern="cat", replacement="dog")])

    assert sanitizer.rule_count == 1
    assert sanitizer.sanitize("cat 555-1234") == "dog 555-1234"


def test_empty_text_is_returned_unchanged() -> None:
    assert Sanitizer([PHONE_RULE]).sanitize("") == ""


def test_load_rules_from_file_accepts_wrapped_list(tmp_path: Path) -> None:
    path = tmp_path / "sanitize.json"
    path.write_text(
        json.dumps({"rules": [{"pattern": "a+", "flags": "g", "replacement": "b", "direction": "out"}]}),
        encoding="utf-8",
    )

    rules = load_rules_from_file(path)

    assert rules == [SanitizationRule(pattern="a+", flags="g", replacement="b", direction="out")]


def test_load_rules_from_missing_file_returns_empty_list(tmp_path: Path) -> None:
    assert load_rules_from_file(tmp_path / "missing.json") == []


def test_stored_rule_defaults_to_global_output_redaction() -> None:
    rule = SanitizationRule.from_mapping({"pattern": r"\d{3}-\d{4}", "replacement": "[redacted]"})

    assert Sanitizer([rule]).sanitize("call 555-1234 now") == "call [redacted] now"
