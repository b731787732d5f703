from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import TextIO


class RunLogger:
    """Console + file logger for command-line labeling runs.

    - console   : INFO+  (human-readable)
    - info_file : INFO+  (same as console but persisted)
    - trace_file: TRACE+ (every line, including per-span detail)

    Library modules log through stdlib ``logging``; ``install_stdlib_bridge``
    routes those records here.
    """

    LEVELS: dict[str, int] = {
        "TRACE": -1,
        "DEBUG":  0,
        "INFO":   1,
        "METRIC": 1,
        "WARN":   2,
        "ERROR":  3,
    }

    def __init__(
        self,
        log_file: str | Path | None = None,
        trace_file: str | Path | None = None,
        console: bool = True,
        min_level: str = "INFO",
    ) -> None:
        self.console = console
        self.min_level = self.LEVELS.get(min_level.upper(), 1)
        self._info_file: TextIO | None = None
        self._trace_file: TextIO | None = None
        self._metrics: dict[str, object] = {}
        self._start = time.perf_counter()
        self._bridge: _BridgeHandler | None = None
        self._bridge_root: logging.Logger | None = None

        header = f"spanlabel run @ {time.strftime('%Y-%m-%d %H:%M:%S')}"
        if log_file:
            path = Path(log_file)
            path.parent.mkdir(parents=True, exist_ok=True)
            self._info_file = open(path, "w", encoding="utf-8", buffering=1)
            self._raw_info(header)
        if trace_file:
            path = Path(trace_file)
            path.parent.mkdir(parents=True, exist_ok=True)
            self._trace_file = open(path, "w", encoding="utf-8", buffering=1)
            self._raw_trace(header)

    def _raw_info(self, line: str) -> None:
        if self._info_file:
            self._info_file.write(line + "\n")

    def _raw_trace(self, line: str) -> None:
        if self._trace_file:
            self._trace_file.write(line + "\n")

    def _emit(self, level: str, msg: str) -> None:
        level_int = self.LEVELS.get(level, 1)
        elapsed = time.perf_counter() - self._start
        line = f"[{time.strftime('%H:%M:%S')}] [{elapsed:7.2f}s] {level:6} | {msg}"

        if self.console and level_int >= self.min_level:
            print(line, flush=True)
        if level_int >= 1:
            self._raw_info(line)
        self._raw_trace(line)

    def trace(self, msg: str) -> None:
        self._emit("TRACE", msg)

    def debug(self, msg: str) -> None:
        self._emit("DEBUG", msg)

    def info(self, msg: str) -> None:
        self._emit("INFO", msg)

    def warn(self, msg: str) -> None:
        self._emit("WARN", msg)

    def error(self, msg: str) -> None:
        self._emit("ERROR", msg)

    def section(self, title: str) -> None:
        sep = "=" * 72
        for line in ("", sep, f"  {title}", sep):
            if self.console:
                print(line, flush=True)
            self._raw_info(line)
            self._raw_trace(line)

    def metric(self, name: str, value: object, unit: str = "") -> None:
        self._metrics[name] = value
        vstr = f"{value:.3f}" if isinstance(value, float) else str(value)
        if unit:
            vstr += f" {unit}"
        self._emit("METRIC", f"{name} = {vstr}")

    @contextmanager
    def timer(self, name: str):
        start = time.perf_counter()
        try:
            yield
        finally:
            self.metric(f"timer:{name}", time.perf_counter() - start, "s")

    def install_stdlib_bridge(self, root_logger: str = "", level: int = logging.INFO) -> None:
        """Route stdlib ``logging`` records under ``root_logger`` to this logger.

        Replaces any bridge left behind by an earlier RunLogger.
        """
        root = logging.getLogger(root_logger)
        for existing in [h for h in root.handlers if isinstance(h, _BridgeHandler)]:
            root.removeHandler(existing)
        self._bridge = _BridgeHandler(self)
        self._bridge.setLevel(level)
        root.setLevel(min(root.level or logging.DEBUG, level))
        root.addHandler(self._bridge)
        self._bridge_root = root

    def close(self) -> None:
        if self._bridge is not None:
            self._bridge_root.removeHandler(self._bridge)
            self._bridge = None
        for name in ("_info_file", "_trace_file"):
            handle = getattr(self, name)
            if handle:
                handle.close()
                setattr(self, name, None)

    def __enter__(self) -> "RunLogger":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


class _BridgeHandler(logging.Handler):
    _MAP = {
        logging.DEBUG:    "trace",
        logging.INFO:     "info",
        logging.WARNING:  "warn",
        logging.ERROR:    "error",
        logging.CRITICAL: "error",
    }

    def __init__(self, logger: RunLogger) -> None:
        super().__init__()
        self._run_logger = logger

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            getattr(self._run_logger, self._MAP.get(record.levelno, "info"))(
                f"[{record.name}] {msg}"
            )
        except Exception:
            self.handleError(record)
