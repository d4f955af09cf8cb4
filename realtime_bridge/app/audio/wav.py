"""WAV container wrapping for raw PCM16 audio."""

from __future__ import annotations

import struct

WAV_HEADER_BYTES = 44


def pcm16_to_wav(pcm: bytes, *, sample_rate: int, channels: int = 1) -> bytes:
    """Wraps little-endian PCM16 samples in a minimal RIFF/WAVE container.

    Args:
        pcm: Raw PCM16 audio.
        sample_rate: Samples per second.
        channels: Interleaved channel count.

    Returns:
        Header (44 bytes) followed by the unchanged sample data.
    """
    bits_per_sample = 16
    block_align = channels * bits_per_sample // 8
    byte_rate = sample_rate * block_align
    header = struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + len(pcm),
        b"WAVE",
        b"fmt ",
        16,
        1,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        b"data",
        len(pcm),
    )
    return header + pcm
