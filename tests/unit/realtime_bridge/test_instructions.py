from __future__ import annotations

import json
from pathlib import Path

from realtime_bridge.app.instructions import (
    InstructionBlock,
    InstructionSet,
    compose_instructions,
    heading_for_key,
    load_instructions_from_file,
)


def test_heading_for_key_title_cases_words() -> None:
    assert heading_for_key("tone_and_style") == "Tone And Style"


def test_compose_instructions_collapses_blank_lines_and_skips_empty_blocks() -> None:
    composed = compose_instructions(
        {
            "tone_and_style": ["Be brief.", "", "", "Be kind."],
            "empty_block": ["", "   "],
            "tool_usage": ["Use tools when asked."],
        }
    )

    assert composed == "Tone And Style\nBe brief.\n\nBe kind.\n\nTool Usage\nUse tools when asked."


def test_compose_instructions_returns_empty_string_without_content() -> None:
    assert compose_instructions({"a": [], "b": [""]}) == ""


def test_instruction_set_appends_assistant_blocks_by_sort_order() -> None:
    instruction_set = InstructionSet(
        global_blocks=(InstructionBlock(key="identity", lines=("You are helpful.",)),),
        assistant_blocks={
            "support": (
                InstructionBlock(key="closing", lines=("Say goodbye.",), sort_order=2),
                InstructionBlock(key="focus", lines=("Fix bookings.",), sort_order=1),
            )
        },
    )

    assert instruction_set.for_assistant("support") == (
        "Identity\nYou are helpful.\n\nFocus\nFix bookings.\n\nClosing\nSay goodbye."
    )
    assert instruction_set.for_assistant("unknown") == "Identity\nYou are helpful."
    assert instruction_set.for_assistant(None) == "Identity\nYou are helpful."


def test_load_instructions_from_file(tmp_path: Path) -> None:
    path = tmp_path / "instructions.json"
    path.write_text(
        json.dumps(
            {
                "global": {"identity": ["Hi."]},
                "assistants": {"sales": [{"type": "upsell", "lines": ["Offer extras."], "sortOrder": 3}]},
            }
        ),
        encoding="utf-8",
    )

    instruction_set = load_instructions_from_file(path)

    assert instruction_set.global_instructions() == "Identity\nHi."
    assert instruction_set.assistant_blocks == {
        "sales": (InstructionBlock(key="upsell", lines=("Offer extras.",), sort_order=3),)
    }


def test_load_instructions_from_missing_file_returns_empty_set(tmp_path: Path) -> None:
    assert load_instructions_from_file(tmp_path / "missing.json").for_assistant("x") == ""
