"""Reading the engine's access and error logs."""

from __future__ import annotations

import time
from collections import deque
from pathlib import Path
from typing import Callable, Iterator


def tail_lines(path: Path | str, count: int = 50) -> list[str]:
    """Return the last ``count`` lines of ``path`` without trailing newlines.

    Raises:
        FileNotFoundError: the log file does not exist

    """
    if count <= 0:
        return []
    with open(path, encoding="utf-8", errors="replace") as f:
        return [line.rstrip("\n") for line in deque(f, maxlen=count)]


def follow(
    path: Path | str,
    poll_interval: float = 0.5,
    should_stop: Callable[[], bool] | None = None,
) -> Iterator[str]:
    """Yield lines appended to ``path`` until ``should_stop`` returns True.

    Starts at the current end of the file. A truncated or rotated file is
    re-read from the start.
    """
    target = Path(path)
    f = open(target, encoding="utf-8", errors="replace")  # noqa: SIM115
    try:
        f.seek(0, 2)
        inode = target.stat().st_ino
        while should_stop is None or not should_stop():
            line = f.readline()
            if line:
                yield line.rstrip("\n")
                continue
            try:
                stat = target.stat()
            except FileNotFoundError:
                stat = None
            if stat is not None and (stat.st_ino != inode or stat.st_size < f.tell()):
                f.close()
                f = open(target, encoding="utf-8", errors="replace")  # noqa: SIM115
                inode = stat.st_ino
                continue
            time.sleep(poll_interval)
    finally:
        f.close()
