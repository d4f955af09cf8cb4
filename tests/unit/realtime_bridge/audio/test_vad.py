from __future__ import annotations

import pytest

import realtime_bridge.app.audio.vad as vad_module
from realtime_bridge.app.audio.vad import (
    AudioGate,
    GateDecision,
    PassThroughClassifier,
    create_speech_classifier,
)


class _ScriptedClassifier:
    always_passes = False

    def __init__(self, pattern: list[bool], frame_bytes: int = 4) -> None:
        self.frame_bytes = frame_bytes
        self._pattern = list(pattern)
        self.frames: list[bytes] = []

    def is_speech(self, frame: bytes) -> bool:
        self.frames.append(frame)
        return self._pattern.pop(0)


class _BrokenClassifier:
    always_passes = False
    frame_bytes = 4

    def is_speech(self, frame: bytes) -> bool:
        raise ValueError("bad frame")


def test_gate_forwards_when_speech_meets_both_thresholds() -> None:
    gate = AudioGate(
        _ScriptedClassifier([True, True, False, False]),
        min_frames=2,
        min_speech_fraction=0.5,
    )

    decision = gate.evaluate(b"\x01" * 16)

    assert decision == GateDecision(forward=True, speech_frames=2, total_frames=4)
    assert decision.speech_fraction == 0.5


def test_gate_drops_when_speech_fraction_is_too_low() -> None:
    gate = AudioGate(
        _ScriptedClassifier([True, True] + [False] * 8),
        min_frames=2,
        min_speech_fraction=0.3,
    )

    decision = gate.evaluate(b"\x01" * 40)

    assert decision.forward is False
    assert decision.speech_frames == 2
    assert decision.total_frames == 10


def test_gate_requires_at_least_one_speech_frame() -> None:
    gate = AudioGate(_ScriptedClassifier([False, False]), min_frames=0, min_speech_fraction=0.0)

    assert gate.min_frames == 1
    assert gate.evaluate(b"\x00" * 8).forward is False


def test_gate_ignores_trailing_partial_frame() -> None:
    classifier = _ScriptedClassifier([True, True])
    gate = AudioGate(classifier, min_frames=1, min_speech_fraction=0.1)

    decision = gate.evaluate(b"\x01" * 10)

    assert decision.total_frames == 2
    assert classifier.frames == [b"\x01" * 4, b"\x01" * 4]


def test_gate_drops_chunk_shorter_than_one_frame() -> None:
    gate = AudioGate(_ScriptedClassifier([]), min_frames=1, min_speech_fraction=0.0)

    decision = gate.evaluate(b"\x01\x02")

    assert decision.forward is False
    assert decision.total_frames == 0
    assert decision.speech_fraction == 0.0


def test_gate_counts_classifier_errors_as_silence() -> None:
    gate = AudioGate(_BrokenClassifier(), min_frames=1, min_speech_fraction=0.0)

    decision = gate.evaluate(b"\x01" * 8)

    assert decision.forward is False
    assert decision.speech_frames == 0
    assert decision.total_frames == 2


def test_disabled_gating_uses_pass_through_classifier() -> None:
    classifier = create_speech_classifier(enabled=False, sample_rate=16000, frame_ms=10, aggressiveness=3)
    gate = AudioGate(classifier, min_frames=5, min_speech_fraction=0.9)

    decision = gate.evaluate(b"\x00" * 640)

    assert isinstance(classifier, PassThroughClassifier)
    assert classifier.frame_bytes == 320
    assert gate.passes_everything is True
    assert decision.forward is True
    assert decision.total_frames == 2


def test_missing_webrtcvad_falls_back_to_pass_through(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(vad_module, "WEBRTC_VAD_AVAILABLE", False)

    classifier = create_speech_classifier(enabled=True, sample_rate=48000, frame_ms=10, aggressiveness=3)

    assert isinstance(classifier, PassThroughClassifier)
    assert classifier.frame_bytes == 960
    assert vad_module.speech_classifier_available() is False
