from __future__ import annotations

import struct

from realtime_bridge.app.audio.wav import WAV_HEADER_BYTES, pcm16_to_wav


def test_pcm16_to_wav_writes_riff_header() -> None:
    pcm = b"\x01\x00\x02\x00" * 10

    wav = pcm16_to_wav(pcm, sample_rate=24000)

    assert len(wav) == WAV_HEADER_BYTES + len(pcm)
    assert wav[:4] == b"RIFF"
    assert wav[8:16] == b"WAVEfmt "
    assert struct.unpack("<I", wav[4:8])[0] == 36 + len(pcm)
    channels, sample_rate, byte_rate, block_align, bits = struct.unpack("<HIIHH", wav[22:36])
    assert (channels, sample_rate, byte_rate, block_align, bits) == (1, 24000, 48000, 2, 16)
    assert wav[36:40] == b"data"
    assert struct.unpack("<I", wav[40:44])[0] == len(pcm)
    assert wav[WAV_HEADER_BYTES:] == pcm


def test_pcm16_to_wav_accounts_for_channels() -> None:
    wav = pcm16_to_wav(b"", sample_rate=16000, channels=2)

    channels, _sample_rate, byte_rate, block_align, _bits = struct.unpack("<HIIHH", wav[22:36])
    assert channels == 2
    assert block_align == 4
    assert byte_rate == 64000
