from __future__ import annotations

from realtime_bridge.app.observability.metrics import MetricsTracker


def test_snapshot_starts_empty() -> None:
    snapshot = MetricsTracker().snapshot()

    assert snapshot["tool_calls"] == 0
    assert snapshot["tool_avg_latency_ms"] is None
    assert snapshot["vad"]["speech_ratio"] is None
    assert snapshot["cancellations"] == 0


def test_snapshot_aggregates_tool_vad_and_cancellation_counters() -> None:
    tracker = MetricsTracker()
    tracker.record_tool_result(name="lookup_booking", ok=True, duration_ms=100)
    tracker.record_tool_result(name="lookup_booking", ok=False, duration_ms=300)
    tracker.record_tool_result(name="end_call", ok=True)
    tracker.record_vad_sample(speech_frames=2, total_frames=3, forwarded=True)
    tracker.record_vad_sample(speech_frames=0, total_frames=3, forwarded=False)
    tracker.record_cancellation("client")

    assert tracker.snapshot() == {
        "tool_calls": 3,
        "tool_failures": 1,
        "tool_avg_latency_ms": 200,
        "vad": {
            "forwarded": 1,
            "dropped": 1,
            "speech_frames": 2,
            "total_frames": 6,
            "speech_ratio": 0.333,
        },
        "cancellations": 1,
    }


def test_trackers_keep_separate_registries() -> None:
    first = MetricsTracker()
    second = MetricsTracker()

    first.record_cancellation("client")

    assert first.cancellations == 1
    assert second.cancellations == 0
    assert first.registry is not second.registry


def test_exposition_renders_labelled_samples() -> None:
    tracker = MetricsTracker()
    tracker.record_tool_result(name="get_weather", ok=False, duration_ms=50)
    tracker.record_vad_sample(speech_frames=1, total_frames=4, forwarded=False)

    text = tracker.exposition().decode("utf-8")

    assert 'bridge_tool_failures_total{tool="get_weather"} 1.0' in text
    assert 'bridge_tool_latency_seconds_count{tool="get_weather"} 1.0' in text
    assert 'bridge_vad_chunks_total{decision="dropped"} 1.0' in text
    assert "bridge_vad_frames_total 4.0" in text
