# pingstats/brain/stats.py
import bisect
import math
from typing import Optional

from pingstats.brain.rules import display_scale, ewma, ewma_weight, needs_rescale, precision
from pingstats.brain.state import Sample
from pingstats.config import Settings
from pingstats.schemas import EchoResult


class RollingStats:
    """
    Time-ordered, bounded history of ping results with streaming EWMA mean,
    jitter and loss. Completions may arrive out of send order; insertion keeps
    the history sorted by sent_time regardless.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.s = settings or Settings()
        self._samples: list[Sample] = []
        self._sent_times: list[float] = []      # parallel to _samples, for bisect
        self._trace: list[EchoResult] = []
        self.last_result: Optional[EchoResult] = None
        self.last_responder = ""

        self.last_ping = 0.0
        self.mean_ping = 0.0
        self.max_ping = 0.0
        self.jitter = 0.0
        self.loss_percentage = 0.0
        self._loss = 0.0
        self._squared_jitter = 0.0
        self._attempts = 0
        self._successes = 0

        self.pixel_per_ms = 1.0
        self.ping_offset_ms = 0.0
        self.grid_ms = 50.0

    def __len__(self) -> int:
        return len(self._samples)

    def samples(self) -> list[Sample]:
        return list(self._samples)

    def trace_results(self) -> list[EchoResult]:
        return list(self._trace)

    def insert(self, result: EchoResult) -> Sample:
        self.last_responder = str(result.responder)

        # usually lands at (or near) the end
        i = bisect.bisect_right(self._sent_times, result.sent_time)
        sample = Sample(
            sent_time=result.sent_time,
            roundtrip_time=result.latency_ms,
            roundtrip_time_mean=self.mean_ping,
            roundtrip_time_jitter=self.jitter,
            loss_percentage=self.loss_percentage,
            result=result,
        )
        self._sent_times.insert(i, result.sent_time)
        self._samples.insert(i, sample)
        n = len(self._samples)

        self._attempts += 1
        lw = ewma_weight(self.s.loss_weight, self._attempts)
        self._loss = ewma(self._loss, 1.0 if result.is_lost else 0.0, lw)
        self.loss_percentage = 100.0 * self._loss

        if not result.is_lost:
            self._successes += 1
            self._update_latency(result.latency_ms, self._successes)

        sample.roundtrip_time_mean = self.mean_ping
        sample.roundtrip_time_jitter = self.jitter
        sample.loss_percentage = self.loss_percentage

        if n > self.s.history_limit:
            # keep the newest half
            del self._samples[: n // 2]
            del self._sent_times[: n // 2]

        self.last_result = result
        return sample

    def insert_trace(self, result: EchoResult) -> None:
        self.last_responder = str(result.responder)
        self._trace.append(result)
        if len(self._trace) > self.s.history_limit:
            del self._trace[: len(self._trace) // 2]
        self.last_result = result

    def _update_latency(self, latency_ms: float, n: int) -> None:
        self.last_ping = latency_ms
        self.max_ping = max(self.max_ping, latency_ms)

        mw = ewma_weight(self.s.mean_weight, n)
        self.mean_ping = ewma(self.mean_ping, latency_ms, mw)

        jw = ewma_weight(self.s.jitter_weight, n)
        sd = (self.mean_ping - latency_ms) ** 2
        self._squared_jitter = ewma(self._squared_jitter, sd, jw)
        self.jitter = math.sqrt(self._squared_jitter)

        pixel_per_ms, optimal, grid = display_scale(self.mean_ping, self.jitter, self.s.plot_height_px)
        if needs_rescale(optimal, self.pixel_per_ms):
            self.pixel_per_ms = pixel_per_ms
            self.ping_offset_ms = 0.0
            self.grid_ms = grid

    def status_string(self) -> str:
        if self.last_result is None:
            return "No response yet."
        return self.last_result.describe()

    def summary(self) -> str:
        def ms(label, x, unit="ms"):
            return f"{label} {x:4.{precision(x, 0, 1, 2)}f} {unit}"

        return " | ".join([
            ms("ping", self.last_ping),
            ms("mean", self.mean_ping),
            ms("jttr", self.jitter),
            ms("loss", self.loss_percentage, "%"),
            ms("grid", self.grid_ms),
        ])
