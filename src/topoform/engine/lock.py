"""Cross-process state locking."""

from __future__ import annotations

import sys
import time
from pathlib import Path
from typing import TYPE_CHECKING, IO

from topoform.errors import StateLockError

if TYPE_CHECKING:
    from types import TracebackType

try:
    import fcntl  # type: ignore[attr-defined]
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore[assignment]

_POLL_INTERVAL = 0.1


class StateLock:
    """Exclusive advisory lock held next to a state file (``<state>.lock``).

    With ``timeout=None`` acquisition blocks; otherwise it polls and raises
    ``StateLockError`` once *timeout* seconds have passed.
    """

    def __init__(self, state_path: Path, *, timeout: float | None = None) -> None:
        self._lock_path = Path(str(state_path) + ".lock")
        self._timeout = timeout
        self._file: IO[str] | None = None

    @property
    def lock_path(self) -> Path:
        return self._lock_path

    def __enter__(self) -> StateLock:
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self._lock_path.open("a+", encoding="utf-8")
        try:
            self._acquire()
        except Exception as e:
            try:
                self._file.close()
            finally:
                self._file = None
            if isinstance(e, StateLockError):
                raise
            raise StateLockError(str(e)) from e
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._file is None:
            return
        try:
            self._release()
        finally:
            self._file.close()
            self._file = None

    def _try_lock(self) -> bool:
        if self._file is None:
            raise StateLockError("Lock file is not open")
        fd = self._file.fileno()
        if fcntl is not None:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                return False
            return True

        if sys.platform == "win32":  # pragma: no cover
            import msvcrt

            try:
                msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
            except OSError:
                return False
            return True

        raise StateLockError("State locking is not supported on this platform")

    def _acquire(self) -> None:
        if self._file is None:
            raise StateLockError("Lock file is not open")

        deadline = None if self._timeout is None else time.monotonic() + self._timeout
        while not self._try_lock():
            if deadline is not None and time.monotonic() >= deadline:
                raise StateLockError(f"Timed out waiting for state lock {self._lock_path}")
            time.sleep(_POLL_INTERVAL)

    def _release(self) -> None:
        if self._file is None:
            return

        if fcntl is not None:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
            return

        if sys.platform == "win32":  # pragma: no cover
            import msvcrt

            msvcrt.locking(self._file.fileno(), msvcrt.LK_UNLCK, 1)
