# pingstats/prober/flag.py
import os
import threading


class CancelFlag:
    """
    Level-triggered stop signal. Once set it stays set, and its read end
    polls readable forever, so it can sit in the same select() as the
    completion signals of in-flight echoes.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._rfd, self._wfd = os.pipe()

    def fileno(self) -> int:
        return self._rfd

    def is_set(self) -> bool:
        return self._event.is_set()

    def set(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            if self._wfd >= 0:
                os.write(self._wfd, b"x")

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def close(self) -> None:
        with self._lock:
            for fd in (self._rfd, self._wfd):
                try:
                    os.close(fd)
                except OSError:
                    pass
            self._rfd = self._wfd = -1
