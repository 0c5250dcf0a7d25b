from __future__ import annotations

import sys
import traceback
from datetime import datetime
from pathlib import Path
from types import TracebackType
from typing import Any, Callable, Optional, TextIO, Type, Union


class _Tee:
    """Text stream that writes to the console and the transcript file."""

    def __init__(self, console: TextIO, transcript: TextIO):
        self._console = console
        self._transcript = transcript

    def write(self, text: str) -> int:
        self._console.write(text)
        self._transcript.write(text)
        return len(text)

    def flush(self) -> None:
        self._console.flush()
        self._transcript.flush()

    def __getattr__(self, name: str) -> Any:
        return getattr(self._console, name)


class Transcript:
    """Records everything written to stdout and stderr during a run.

    The file is named ``<prefix>_<YYYYMMDD-HHMMSS>.log`` inside ``log_path``.
    Leaving the ``with`` block always restores the console streams and closes
    the file, whether the run succeeded, failed, or raised.
    """

    def __init__(
        self,
        log_path: Union[str, Path],
        prefix: str,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.clock = clock
        self.started = clock()
        self.path = Path(log_path) / f"{prefix}_{self.started.strftime('%Y%m%d-%H%M%S')}.log"
        self._handle: Optional[TextIO] = None
        self._stdout: Optional[TextIO] = None
        self._stderr: Optional[TextIO] = None

    def __enter__(self) -> "Transcript":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = self.path.open("w", encoding="utf-8")
        self._handle.write(
            f"Transcript started, output file is {self.path}\n"
            f"Start time: {self.started:%Y-%m-%d %H:%M:%S}\n\n"
        )
        self._stdout, self._stderr = sys.stdout, sys.stderr
        sys.stdout = _Tee(self._stdout, self._handle)  # type: ignore[assignment]
        sys.stderr = _Tee(self._stderr, self._handle)  # type: ignore[assignment]
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> bool:
        sys.stdout.flush()
        sys.stderr.flush()
        sys.stdout, sys.stderr = self._stdout, self._stderr  # type: ignore[assignment]

        if self._handle is not None:
            if exc_type is not None and not issubclass(exc_type, SystemExit):
                self._handle.write("".join(traceback.format_exception(exc_type, exc, tb)))
            self._handle.write(f"\nTranscript stopped\nEnd time: {self.clock():%Y-%m-%d %H:%M:%S}\n")
            self._handle.close()
            self._handle = None
        return False
