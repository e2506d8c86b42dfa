"""Handlers that route records into per-module log files.

Writes are synchronous; each is a short append and flush.
"""

import logging
from pathlib import Path
from typing import TextIO


def _rotate_log_file(log_dir: Path, log_name: str, stream: TextIO | None) -> TextIO:
    """Move ``<name>.log`` to ``<name>.previous.log`` and reopen ``<name>.log``.

    Closes ``stream`` first if given.
    """
    current = log_dir / f"{log_name}.log"
    previous = log_dir / f"{log_name}.previous.log"

    if stream:
        stream.close()

    if previous.exists():
        previous.unlink()
    if current.exists():
        current.rename(previous)

    return current.open("a", encoding="utf-8")


class ModuleDispatchHandler(logging.Handler):
    """One handler, many files: records go to the file their logger name maps to.

    File handles are cached and opened lazily, so a request that touches the
    gateway, the stages and the embedding client holds three handles, not one
    FileHandler per module.

    Usage:
        handler = ModuleDispatchHandler(Path("logs"))
        handler.setFormatter(logging.Formatter("%(asctime)s - %(message)s"))
        logging.getLogger().addHandler(handler)
    """

    def __init__(self, log_dir: Path):
        super().__init__()
        self.log_dir = log_dir
        self._file_cache: dict[str, TextIO] = {}

    def emit(self, record: logging.LogRecord) -> None:
        try:
            # Deferred to avoid a circular import with core.logging
            from core.logging.run_manager import module_to_log_name, should_rotate

            log_name = module_to_log_name(record.name)
            if should_rotate(log_name):
                self._rotate_file(log_name)

            file = self._get_or_open_file(log_name)
            file.write(self.format(record) + "\n")
            file.flush()
        except Exception:
            self.handleError(record)

    def _rotate_file(self, log_name: str) -> None:
        existing = self._file_cache.pop(log_name, None)
        self._file_cache[log_name] = _rotate_log_file(self.log_dir, log_name, existing)

    def _get_or_open_file(self, log_name: str) -> TextIO:
        if log_name not in self._file_cache:
            path = self.log_dir / f"{log_name}.log"
            self._file_cache[log_name] = open(path, "a", encoding="utf-8")
        return self._file_cache[log_name]

    def close(self) -> None:
        self.acquire()
        try:
            for file in self._file_cache.values():
                try:
                    file.close()
                except OSError:
                    pass
            self._file_cache.clear()
        finally:
            self.release()
        super().close()


class ThirdPartyHandler(logging.FileHandler):
    """All library logs (httpx, anthropic, langgraph, ...) in one run-3p.log.

    Rotates at run boundaries like ModuleDispatchHandler.
    """

    LOG_NAME = "run-3p"

    def __init__(self, log_dir: Path, **kwargs):
        self.log_dir = log_dir
        super().__init__(log_dir / f"{self.LOG_NAME}.log", mode="a", encoding="utf-8", **kwargs)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            from core.logging.run_manager import should_rotate

            if should_rotate(self.LOG_NAME):
                self._rotate_file()
            super().emit(record)
        except Exception:
            self.handleError(record)

    def _rotate_file(self) -> None:
        self.stream = _rotate_log_file(self.log_dir, self.LOG_NAME, self.stream)
