# pingstats/brain/controller.py

import threading
from typing import Callable, Iterable, Optional

from loguru import logger

from pingstats.brain.discovery import RouteDiscovery, parse_target_spec
from pingstats.brain.scheduler import ProbeScheduler
from pingstats.brain.state import Sample
from pingstats.brain.stats import RollingStats
from pingstats.config import Settings, TargetSettings
from pingstats.errors import DiscoveryFailure
from pingstats.logs import format_result_line
from pingstats.prober.base import Prober
from pingstats.prober.flag import CancelFlag
from pingstats.schemas import EchoResult, Phase

Sink = Callable[[str, EchoResult, Phase], None]


class PingMonitor:
    """
    Everything for one target: discovery, scheduler, statistics and the
    cancel flag. run() is the target's whole life; start() runs it on a
    dedicated thread, which is then the only writer of this monitor's state.
    """

    def __init__(self, prober: Prober, settings: Settings, target: TargetSettings,
                 sink: Optional[Sink] = None):
        self.prober = prober
        self.s = settings.validate()
        self.t = target.validate()
        self.tag = target.tag
        self.sink = sink

        # bad specs / unresolvable hosts raise ConfigError here, before any thread starts
        spec = parse_target_spec(target.address, settings)
        self.discovery = RouteDiscovery(spec, settings, tag=self.tag)
        self.stats = RollingStats(settings)
        self.cancel = CancelFlag()
        self.scheduler = ProbeScheduler(prober, settings, target, self.cancel, self._on_result, tag=self.tag)

        self.failure: Optional[DiscoveryFailure] = None
        self._status: Optional[str] = None    # set by the first steady result
        self._thread: Optional[threading.Thread] = None

        logger.info(
            f"Initiating ping to {target.address!r} with interval = {target.interval_ms} ms, "
            f"timeout = {target.timeout_ms} ms, async = {target.async_mode}."
        )

    @property
    def status(self) -> str:
        if self.failure is not None or self._status is None:
            return self.discovery.status
        return self._status

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def samples(self) -> list[Sample]:
        return self.stats.samples()

    def _on_result(self, result: EchoResult, phase: Phase) -> None:
        if phase == "trace":
            self.stats.insert_trace(result)
        else:
            self.stats.insert(result)
            if result.is_lost:
                self._status = result.describe()
            else:
                hops = self.discovery.state.hops
                self._status = f"Pinging {result.responder} over {hops} {'hop' if hops == 1 else 'hops'}."
            logger.debug(
                f"{self.tag}: Latency = {self.stats.last_ping:.3f} ms, Mean = {self.stats.mean_ping:.3f} ms, "
                f"Jitter = {self.stats.jitter:.3f} ms, Loss = {self.stats.loss_percentage:.2f}%. "
                f"{result.describe() if result.is_lost else ''}"
            )

        logger.debug(f"{self.tag}: {format_result_line(result)}")

        if self.sink is not None:
            try:
                self.sink(self.tag, result, phase)
            except Exception:
                logger.exception(f"{self.tag}: result sink failed")

    def run(self) -> None:
        try:
            self.scheduler.run(self.discovery)
        except DiscoveryFailure as e:
            # terminal for this target: keep the status, stop probing
            self.failure = e
        finally:
            logger.info(f"{self.tag}: monitor stopped after {self.scheduler.probes_sent} probes")

    def start(self) -> "PingMonitor":
        if self._thread is not None:
            raise RuntimeError(f"monitor {self.tag!r} already started")
        self._thread = threading.Thread(target=self.run, name=f"pingstats-{self.tag}", daemon=True)
        self._thread.start()
        return self

    def stop(self) -> None:
        self.cancel.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def close(self) -> None:
        self.stop()
        self.join()
        self.cancel.close()


class MonitorGroup:
    """One independent monitor (and prober) per target; nothing shared between them."""

    def __init__(self, prober_factory: Callable[[], Prober], settings: Settings,
                 targets: Iterable[TargetSettings], sink: Optional[Sink] = None):
        self.monitors = [PingMonitor(prober_factory(), settings, t, sink) for t in targets]

    def __iter__(self):
        return iter(self.monitors)

    def __len__(self) -> int:
        return len(self.monitors)

    def start(self) -> "MonitorGroup":
        for m in self.monitors:
            m.start()
        return self

    def stop(self) -> None:
        for m in self.monitors:
            m.stop()

    def join(self, timeout: Optional[float] = None) -> None:
        for m in self.monitors:
            m.join(timeout)

    def close(self) -> None:
        self.stop()
        for m in self.monitors:
            m.close()
