# pingstats/prober/ping.py
import math
import os
import re
import shutil
import subprocess
from ipaddress import IPv4Address
from typing import NamedTuple, Optional

from loguru import logger

from pingstats.prober.base import PendingEcho, Prober, failed_send, reply_result
from pingstats.schemas import NO_RESPONDER, EchoResult, ErrorKind, ReplyType

DEFAULT_PING_BIN = shutil.which("ping") or "/usr/bin/ping"
PAYLOAD_BYTES = 32

_ADDR = r"(\d{1,3}(?:\.\d{1,3}){3})"
# "40 bytes from 8.8.8.8: icmp_seq=1 ttl=117 time=10.6 ms" (name form: "from host (1.2.3.4):")
_REPLY_RE = re.compile(
    rf"^\d+ bytes from (?:\S+ \()?{_ADDR}\)?:.*?time[=<]([\d.]+) ?ms", re.IGNORECASE
)
# "From 192.168.1.1 icmp_seq=1 Time to live exceeded"
_ICMP_ERROR_RE = re.compile(rf"^From (?:\S+ \()?{_ADDR}\)?:? icmp_seq=\d+ (.*)$", re.IGNORECASE)


class ParsedPing(NamedTuple):
    replies: int
    status: ReplyType
    responder: IPv4Address
    rtt_ms: Optional[float]
    error: Optional[ErrorKind]
    detail: str


def _classify_icmp_error(text: str) -> ReplyType:
    low = text.lower()
    if "time to live exceeded" in low:
        return "ttl_exceeded"
    if "unreachable" in low:
        return "unreachable"
    return "other"


def parse_ping_output(out: str, returncode: int) -> ParsedPing:
    """
    Parse the output of one `ping -n -c 1` run (iputils format).
    Only the first reply line is interpreted; the count is kept so the
    caller can refuse to read fields when nothing came back.
    """
    replies = 0
    first: Optional[ParsedPing] = None

    for line in out.splitlines():
        line = line.strip()
        if not line:
            continue

        m = _REPLY_RE.match(line)
        if m:
            replies += 1
            if first is None:
                first = ParsedPing(1, "success", IPv4Address(m.group(1)), float(m.group(2)), None, "")
            continue

        m = _ICMP_ERROR_RE.match(line)
        if m:
            replies += 1
            if first is None:
                text = m.group(2).strip()
                first = ParsedPing(1, _classify_icmp_error(text), IPv4Address(m.group(1)), None, None, text)

    if first is not None:
        return first._replace(replies=replies)

    # exit code 2 without any reply: ping could not send (bad ttl, no route, ...)
    if returncode not in (0, 1):
        msg = next((l.strip() for l in out.splitlines() if l.strip().startswith("ping:")), out.strip())
        return ParsedPing(0, "other", NO_RESPONDER, None, "send_failed", msg[:200])

    return ParsedPing(0, "timed_out", NO_RESPONDER, None, None, "")


class _ProcessSignal:
    """Completion signal for one ping child: a pidfd, readable once the child exits."""

    def __init__(self, pid: int):
        self.fd = os.pidfd_open(pid)

    def fileno(self) -> int:
        return self.fd

    def close(self) -> None:
        if self.fd >= 0:
            os.close(self.fd)
            self.fd = -1


class PingProber(Prober):
    """
    Runs the system `ping` once per echo. Each child process is the in-flight
    handle; its pidfd is the completion signal the scheduler waits on, so any
    number of echoes can be outstanding without a thread per echo.
    """

    def __init__(self, ping_bin: str = DEFAULT_PING_BIN, payload_bytes: int = PAYLOAD_BYTES):
        self.ping = ping_bin
        self.payload_bytes = payload_bytes
        if not os.path.exists(self.ping):
            raise FileNotFoundError(f"ping binary not found at {self.ping}")
        if not hasattr(os, "pidfd_open"):
            raise RuntimeError("PingProber needs os.pidfd_open (Linux 5.3+)")

    def _build_cmd(self, target: IPv4Address, source: Optional[IPv4Address],
                   timeout_ms: int, hop_limit: int) -> list[str]:
        wait_s = max(1, math.ceil(timeout_ms / 1000))
        cmd = [
            self.ping, "-n", "-c", "1",
            "-s", str(self.payload_bytes),
            "-t", str(hop_limit),
            "-W", str(wait_s),
        ]
        if source is not None:
            cmd += ["-I", str(source)]
        cmd.append(str(target))
        return cmd

    def send_echo(self, target, source, timeout_ms, hop_limit):
        sent_time = self.now()
        if hop_limit < 1:
            # the kernel rejects IP_TTL 0, ping would only exit with EINVAL
            return failed_send(target, hop_limit, sent_time, f"hop limit {hop_limit} cannot be sent")

        cmd = self._build_cmd(target, source, timeout_ms, hop_limit)
        try:
            proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
        except OSError as e:
            logger.warning(f"could not start {self.ping}: {e}")
            return failed_send(target, hop_limit, sent_time, str(e))

        try:
            signal = _ProcessSignal(proc.pid)
        except OSError as e:
            proc.kill()
            proc.wait()
            return failed_send(target, hop_limit, sent_time, f"pidfd_open: {e}")

        return PendingEcho(
            target=target,
            source=source,
            hop_limit=hop_limit,
            timeout_ms=timeout_ms,
            sent_time=sent_time,
            handle=proc,
            signal=signal,
        )

    def resolve_echo(self, pending: PendingEcho, reply_time: float) -> EchoResult:
        proc: subprocess.Popen = pending.handle
        killed = proc.poll() is None
        if killed:
            # expired without the child exiting on its own
            proc.kill()
        out, _ = proc.communicate()
        pending.signal.close()

        elapsed_ms = (reply_time - pending.sent_time) * 1000.0
        # a child we killed reads as "no reply", not as a failed send
        parsed = parse_ping_output(out or "", 1 if killed else proc.returncode)

        if parsed.error is not None:
            return failed_send(pending.target, pending.hop_limit, pending.sent_time, parsed.detail)

        # ping's own measurement excludes process start-up; fall back to wall time
        latency_ms = parsed.rtt_ms if parsed.rtt_ms is not None else elapsed_ms
        return reply_result(
            pending,
            latency_ms=latency_ms,
            replies=parsed.replies,
            status=parsed.status,
            responder=parsed.responder,
            system_latency_ms=int(round(elapsed_ms)),
            detail=parsed.detail,
        )

    def abandon(self, pending: PendingEcho) -> None:
        proc: subprocess.Popen = pending.handle
        if proc.poll() is None:
            proc.kill()
        proc.communicate()
        pending.signal.close()
