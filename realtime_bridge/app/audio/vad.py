"""Speech gating for client-captured PCM16 audio.

The gate splits a chunk into fixed-size frames, asks a speech classifier about
each frame and forwards the chunk only when enough of it is speech. The
classifier is a small capability interface with two implementations: a
WebRTC-backed classifier and a pass-through stub used when the optional
`webrtcvad` package is not installed or gating is disabled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

try:
    import webrtcvad
    WEBRTC_VAD_AVAILABLE = True
except ImportError:
    WEBRTC_VAD_AVAILABLE = False
    webrtcvad = None

_LOGGER = logging.getLogger(__name__)
_BYTES_PER_SAMPLE = 2


class SpeechClassifier(Protocol):
    """Per-frame speech classifier used by ``AudioGate``."""

    frame_bytes: int
    always_passes: bool

    def is_speech(self, frame: bytes) -> bool: ...


class WebRtcSpeechClassifier:
    """Classifies PCM16 frames with ``webrtcvad.Vad``."""

    always_passes = False

    def __init__(self, sample_rate: int, frame_ms: int, aggressiveness: int) -> None:
        if webrtcvad is None:
            raise RuntimeError("webrtcvad is not installed")
        self.sample_rate = sample_rate
        self.frame_bytes = int(sample_rate * frame_ms / 1000) * _BYTES_PER_SAMPLE
        self._vad = webrtcvad.Vad(aggressiveness)

    def is_speech(self, frame: bytes) -> bool:
        return bool(self._vad.is_speech(frame, self.sample_rate))


class PassThroughClassifier:
    """Treats every frame as speech."""

    always_passes = True

    def __init__(self, frame_bytes: int) -> None:
        self.frame_bytes = frame_bytes

    def is_speech(self, frame: bytes) -> bool:
        del frame
        return True


def speech_classifier_available() -> bool:
    """Returns whether the WebRTC classifier can be constructed."""
    return WEBRTC_VAD_AVAILABLE


def create_speech_classifier(
    *,
    enabled: bool,
    sample_rate: int,
    frame_ms: int,
    aggressiveness: int,
) -> SpeechClassifier:
    """Selects the classifier implementation for one session.

    Args:
        enabled: Whether input gating is configured on.
        sample_rate: Sample rate assumed for classifier frames.
        frame_ms: Frame duration in milliseconds.
        aggressiveness: WebRTC aggressiveness mode (0-3).

    Returns:
        A WebRTC classifier when gating is enabled and available, otherwise a
        pass-through classifier.
    """
    frame_bytes = int(sample_rate * frame_ms / 1000) * _BYTES_PER_SAMPLE
    if not enabled or not WEBRTC_VAD_AVAILABLE:
        return PassThroughClassifier(frame_bytes)
    return WebRtcSpeechClassifier(sample_rate, frame_ms, aggressiveness)


@dataclass(frozen=True, slots=True)
class GateDecision:
    """Outcome of gating one audio chunk.

    Attributes:
        forward: Whether the chunk should be sent upstream.
        speech_frames: Frames the classifier marked as speech.
        total_frames: Whole frames inspected in the chunk.
    """

    forward: bool
    speech_frames: int
    total_frames: int

    @property
    def speech_fraction(self) -> float:
        if self.total_frames == 0:
            return 0.0
        return self.speech_frames / self.total_frames


class AudioGate:
    """Decides per chunk whether client audio is forwarded upstream.

    A chunk passes only when its speech-frame count reaches ``min_frames``
    (never less than one) and its speech-frame fraction reaches
    ``min_speech_fraction``. Decisions are not smoothed across chunks.
    """

    def __init__(
        self,
        classifier: SpeechClassifier,
        *,
        min_frames: int,
        min_speech_fraction: float,
    ) -> None:
        self.classifier = classifier
        self.min_frames = max(1, min_frames)
        self.min_speech_fraction = min_speech_fraction

    @property
    def passes_everything(self) -> bool:
        return self.classifier.always_passes

    def evaluate(self, pcm: bytes) -> GateDecision:
        """Classifies a PCM16 chunk and returns the gating decision.

        Args:
            pcm: Little-endian PCM16 mono audio.

        Returns:
            Decision with speech and total frame counts. Trailing bytes that do
            not fill a whole frame are ignored.
        """
        frame_bytes = self.classifier.frame_bytes
        total_frames = len(pcm) // frame_bytes if frame_bytes > 0 else 0
        if self.classifier.always_passes:
            return GateDecision(forward=True, speech_frames=total_frames, total_frames=total_frames)

        speech_frames = 0
        for index in range(total_frames):
            frame = pcm[index * frame_bytes:(index + 1) * frame_bytes]
            try:
                if self.classifier.is_speech(frame):
                    speech_frames += 1
            except Exception:
                # A frame the classifier rejects counts as non-speech.
                _LOGGER.debug("Speech classifier rejected frame.", exc_info=True)

        fraction = speech_frames / total_frames if total_frames else 0.0
        forward = speech_frames >= self.min_frames and fraction >= self.min_speech_fraction
        return GateDecision(forward=forward, speech_frames=speech_frames, total_frames=total_frames)
