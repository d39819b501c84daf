# tools/run_monitor.py
# Usage examples:
#   python3 -m tools.run_monitor auto4
#   python3 -m tools.run_monitor 1.1.1.1 "trace private4 8.8.8.8" --interval-ms 250 --duration 60
#   python3 -m tools.run_monitor fake --count 50

import argparse
import time

from loguru import logger

from pingstats.brain.controller import MonitorGroup, PingMonitor
from pingstats.config import Settings, TargetSettings
from pingstats.errors import PingstatsError
from pingstats.logs import setup_logging


def build_settings(args) -> Settings:
    return Settings(
        max_in_flight=args.max_in_flight,
        history_limit=args.history_limit,
        mean_weight=args.mean_weight,
        jitter_weight=args.jitter_weight,
        loss_weight=args.loss_weight,
    )


def build_targets(args) -> list[TargetSettings]:
    return [
        TargetSettings(
            address=address,
            source=args.source,
            interval_ms=args.interval_ms,
            timeout_ms=args.timeout_ms,
            async_mode=args.async_mode,
        )
        for address in args.targets
    ]


def run_with_fake(args):
    from pingstats.prober.fake import FakeProber, FakeReply

    # home router, ISP CPE, ISP aggregation, then the first public hop
    script = {
        ("8.8.8.8", 0): [FakeReply("ttl_exceeded", "192.168.1.1", 1.0)],
        ("8.8.8.8", 1): [FakeReply("ttl_exceeded", "10.10.0.1", 4.0)],
        ("8.8.8.8", 2): [FakeReply("ttl_exceeded", "100.64.3.1", 7.0)],
        ("192.168.1.1", 128): [FakeReply("success", delay_ms=1.0)],
        ("10.10.0.1", 128): [FakeReply("success", delay_ms=4.0)],
    }
    for i in range(args.count):
        delay = None if i % 17 == 16 else 8.0 + (i % 5)   # every 17th probe is lost
        script.setdefault(("100.64.3.1", 255), []).append(FakeReply("success", delay_ms=delay))

    prober = FakeProber(script=script)
    monitor = PingMonitor(prober, build_settings(args), TargetSettings(address="auto4", name="fake"))

    def stop_after(tag, result, phase):
        if phase == "ping" and len(monitor.stats) >= args.count:
            monitor.stop()

    monitor.sink = stop_after
    monitor.run()
    print(monitor.status)
    print(monitor.stats.summary())


def run_with_ping(args):
    from pingstats.prober.ping import PingProber

    group = MonitorGroup(PingProber, build_settings(args), build_targets(args))
    group.start()
    deadline = time.monotonic() + args.duration if args.duration else None
    try:
        while any(m.running for m in group):
            if deadline is not None and time.monotonic() >= deadline:
                break
            time.sleep(args.report_every)
            for m in group:
                print(f"{m.tag:>24} | {m.stats.summary()} | {m.status}")
    except KeyboardInterrupt:
        logger.info("interrupted")
    finally:
        group.close()


def build_argparser():
    ap = argparse.ArgumentParser(description="Live latency / jitter / loss monitor")
    ap.add_argument("targets", nargs="*", default=["auto4"],
                    help="Target specs: auto4, a host, 'trace <public4|private4|full> <host>' (or 'fake')")
    ap.add_argument("--source", default="auto", help="Source address to ping from")
    ap.add_argument("--interval-ms", type=int, default=500, help="Time between probes")
    ap.add_argument("--timeout-ms", type=int, default=2000, help="Per-probe timeout")
    ap.add_argument("--sync", dest="async_mode", action="store_false", default=True,
                    help="Wait for each reply before sending the next probe")
    ap.add_argument("--max-in-flight", type=int, default=64, help="Concurrent outstanding probes per target")
    ap.add_argument("--history-limit", type=int, default=4096, help="Samples kept before compacting")
    ap.add_argument("--mean-weight", type=float, default=80.0)
    ap.add_argument("--jitter-weight", type=float, default=40.0)
    ap.add_argument("--loss-weight", type=float, default=40.0)
    ap.add_argument("--duration", type=float, default=0.0, help="Stop after this many seconds (0: run until Ctrl-C)")
    ap.add_argument("--report-every", type=float, default=1.0, help="Seconds between summary lines")
    ap.add_argument("--count", type=int, default=50, help="Samples to collect in fake mode")
    ap.add_argument("--log-level", default="INFO")
    ap.add_argument("--log-file", default=None, help="Also log everything from DEBUG up to this file")
    return ap


if __name__ == "__main__":
    ap = build_argparser()
    args = ap.parse_args()
    setup_logging(args.log_level, args.log_file)

    try:
        if args.targets == ["fake"]:
            run_with_fake(args)
        else:
            run_with_ping(args)
    except (PingstatsError, FileNotFoundError, RuntimeError) as e:
        ap.exit(1, f"error: {e}\n")
