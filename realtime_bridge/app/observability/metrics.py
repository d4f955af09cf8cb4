"""Prometheus metrics for the bridge.

Each ``MetricsTracker`` registers its collectors on its own
``CollectorRegistry``. ``/metrics`` serves that registry in the Prometheus
text format and ``log_periodically()`` logs a summary read back from it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

_LOGGER = logging.getLogger(__name__)

_TOOL_LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 15.0)


class MetricsTracker:
    """Records tool, VAD and cancellation metrics on a private registry."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self._tool_calls = Counter(
            "bridge_tool_calls",
            "Tool calls answered to the model",
            labelnames=("tool",),
            registry=self.registry,
        )
        self._tool_failures = Counter(
            "bridge_tool_failures",
            "Tool calls answered with an error",
            labelnames=("tool",),
            registry=self.registry,
        )
        self._tool_latency = Histogram(
            "bridge_tool_latency_seconds",
            "Time from tool dispatch to the answer sent upstream",
            labelnames=("tool",),
            buckets=_TOOL_LATENCY_BUCKETS,
            registry=self.registry,
        )
        self._vad_chunks = Counter(
            "bridge_vad_chunks",
            "Client audio chunks evaluated by the speech gate",
            labelnames=("decision",),
            registry=self.registry,
        )
        self._vad_speech_frames = Counter(
            "bridge_vad_speech_frames",
            "Audio frames classified as speech",
            registry=self.registry,
        )
        self._vad_frames = Counter(
            "bridge_vad_frames",
            "Audio frames inspected by the speech gate",
            registry=self.registry,
        )
        self._cancellations = Counter(
            "bridge_response_cancellations",
            "Model responses cancelled",
            labelnames=("reason",),
            registry=self.registry,
        )

    def record_tool_result(self, *, name: str, ok: bool, duration_ms: float | None = None) -> None:
        self._tool_calls.labels(tool=name).inc()
        if not ok:
            self._tool_failures.labels(tool=name).inc()
        if duration_ms is not None:
            self._tool_latency.labels(tool=name).observe(duration_ms / 1000)
        _LOGGER.debug(
            "Tool result recorded.",
            extra={"tool": name, "ok": ok, "duration_ms": round(duration_ms) if duration_ms is not None else None},
        )

    def record_vad_sample(self, *, speech_frames: int, total_frames: int, forwarded: bool) -> None:
        self._vad_chunks.labels(decision="forwarded" if forwarded else "dropped").inc()
        self._vad_speech_frames.inc(speech_frames)
        self._vad_frames.inc(total_frames)

    def record_cancellation(self, reason: str) -> None:
        self._cancellations.labels(reason=reason).inc()
        _LOGGER.debug("Response cancellation recorded.", extra={"reason": reason})

    def _total(self, sample_name: str, **labels: str) -> float:
        """Sums every sample named ``sample_name`` whose labels include ``labels``."""
        total = 0.0
        for metric in self.registry.collect():
            for sample in metric.samples:
                if sample.name != sample_name:
                    continue
                if all(sample.labels.get(key) == value for key, value in labels.items()):
                    total += sample.value
        return total

    @property
    def tool_calls(self) -> int:
        return int(self._total("bridge_tool_calls_total"))

    @property
    def tool_failures(self) -> int:
        return int(self._total("bridge_tool_failures_total"))

    @property
    def cancellations(self) -> int:
        return int(self._total("bridge_response_cancellations_total"))

    def snapshot(self) -> dict[str, Any]:
        """Summarizes the registry for periodic logging."""
        latency_count = self._total("bridge_tool_latency_seconds_count")
        latency_sum = self._total("bridge_tool_latency_seconds_sum")
        speech_frames = int(self._total("bridge_vad_speech_frames_total"))
        total_frames = int(self._total("bridge_vad_frames_total"))
        return {
            "tool_calls": self.tool_calls,
            "tool_failures": self.tool_failures,
            "tool_avg_latency_ms": round(latency_sum / latency_count * 1000) if latency_count else None,
            "vad": {
                "forwarded": int(self._total("bridge_vad_chunks_total", decision="forwarded")),
                "dropped": int(self._total("bridge_vad_chunks_total", decision="dropped")),
                "speech_frames": speech_frames,
                "total_frames": total_frames,
                "speech_ratio": round(speech_frames / total_frames, 3) if total_frames else None,
            },
            "cancellations": self.cancellations,
        }

    def exposition(self) -> bytes:
        """Renders the registry in the Prometheus text format."""
        return generate_latest(self.registry)

    async def log_periodically(self, interval_s: float) -> None:
        """Logs a snapshot every ``interval_s`` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval_s)
            _LOGGER.info("Metrics snapshot.", extra={"metrics": self.snapshot()})
