# /folder_sync.py
"""
Folder Sync (no UI)
- Synchronizes the contents of a source folder into a target folder.
- Prefers rsync (archive mode, times preserved, never deletes anything in the target).
- Falls back to a built-in recursive copy when rsync is missing or fails:
  - new files are copied
  - files newer in the source replace the target copy
  - everything else is skipped (equal timestamps count as up to date)
  - modification times are carried over to the target
- Live progress as (fraction, "done / total files") callbacks.
- Cooperative cancellation through a threading.Event (Ctrl+C on the console).
- Optional gitignore-style excludes and a watch mode that re-syncs on change.
- Styled console output:
  - COPY / UPDATE green
  - FALLBACK / CANCEL orange
  - failures red
  - file paths white
  - folder paths light brown
- Log file is always plain (no color codes).

Usage
  pip install watchdog pathspec colorama
  folder-sync --source "/src" --target "/dst"
  folder-sync --source "/src" --target "/dst" --exclude "*.tmp" --exclude "node_modules/"
  folder-sync --source "/src" --target "/dst" --no-rsync --watch
"""

from __future__ import annotations

import argparse
import datetime as dt
import enum
import errno
import logging
import os
import queue
import re
import shutil
import signal
import stat
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional, Sequence, Union

from pathspec import PathSpec
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

try:
    from colorama import init as colorama_init  # type: ignore
except Exception:  # pragma: no cover
    colorama_init = None

LOGGER_NAME = "folder_sync"

RSYNC_SUMMARY_HEADER = "Files synchronized using rsync (additive mode - no files deleted)"
MANUAL_SUMMARY_HEADER = "Files synchronized manually (additive mode)"

# seconds between cancellation checks while rsync is quiet
POLL_INTERVAL_SEC = 0.1
WATCH_POLL_SEC = 0.5
DEFAULT_DEBOUNCE_SEC = 2.0

ProgressCallback = Callable[[float, str], None]

log = logging.getLogger(LOGGER_NAME)


# -------------------------
# Console styling
# -------------------------

class Ansi:
    RESET = "\x1b[0m"
    RED = "\x1b[31m"
    GREEN = "\x1b[32m"
    ORANGE = "\x1b[38;5;208m"
    WHITE = "\x1b[97m"
    LIGHT_BROWN = "\x1b[33m"


ACTION_COLORS = {
    "COPY": Ansi.GREEN,
    "UPDATE": Ansi.GREEN,
    "MKDIR": Ansi.LIGHT_BROWN,
    "RSYNC": Ansi.LIGHT_BROWN,
    "FALLBACK": Ansi.ORANGE,
    "CANCEL": Ansi.ORANGE,
    "FAIL": Ansi.RED,
}


def _supports_color(stream) -> bool:
    try:
        return hasattr(stream, "isatty") and stream.isatty()
    except Exception:
        return False


class ColorizingFormatter(logging.Formatter):
    def __init__(self, use_color: bool, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not self.use_color:
            return base

        action = getattr(record, "action", None)
        is_dir = getattr(record, "is_dir", None)
        path_text = getattr(record, "path_text", None)

        if record.levelno >= logging.ERROR:
            return f"{Ansi.RED}{base}{Ansi.RESET}"

        if action:
            action_color = ACTION_COLORS.get(action, "")
            if action_color and action in base:
                base = base.replace(action, f"{action_color}{action}{Ansi.RESET}", 1)

        if path_text and path_text in base:
            pcolor = Ansi.LIGHT_BROWN if is_dir else Ansi.WHITE
            base = base.replace(path_text, f"{pcolor}{path_text}{Ansi.RESET}")

        return base


def _today_log_name(prefix: str = "folder_sync") -> str:
    return f"{prefix}_{dt.date.today().isoformat()}.log"


def setup_logger(log_dir: Path, verbose: bool = False, name: str = LOGGER_NAME) -> logging.Logger:
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / _today_log_name()
    level = logging.DEBUG if verbose else logging.INFO

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False

    if logger.handlers:
        return logger

    if colorama_init:
        colorama_init()

    fmt = "%(asctime)s | %(levelname)s | %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"

    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setFormatter(logging.Formatter(fmt=fmt, datefmt=datefmt))
    fh.setLevel(level)

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(level)
    ch.setFormatter(ColorizingFormatter(use_color=_supports_color(sys.stdout), fmt=fmt, datefmt=datefmt))

    logger.addHandler(fh)
    logger.addHandler(ch)

    logger.info("Logging to: %s", log_path)
    return logger


def log_action(
    logger: logging.Logger,
    action: str,
    message: str,
    path: Optional[Path] = None,
    is_dir: Optional[bool] = None,
    level: int = logging.INFO,
) -> None:
    if not logger.isEnabledFor(level):
        return
    extra = {"action": action}
    if path is not None:
        extra["path_text"] = str(path)
        extra["is_dir"] = bool(is_dir) if is_dir is not None else (path.exists() and path.is_dir())
    logger.log(level, f"{action} | {message}", extra=extra)


# -------------------------
# Outcomes / progress
# -------------------------

class FailureKind(enum.Enum):
    TOOL_UNAVAILABLE = "tool_unavailable"
    SUBPROCESS = "subprocess"
    IO = "io"
    INVALID_REQUEST = "invalid_request"


@dataclass(frozen=True)
class Completed:
    summary: str


@dataclass(frozen=True)
class Cancelled:
    pass


@dataclass(frozen=True)
class Failed:
    message: str
    kind: FailureKind = FailureKind.IO


SyncOutcome = Union[Completed, Cancelled, Failed]


@dataclass(frozen=True)
class ProgressUpdate:
    fraction: float
    label: str


def files_label(done: int, total: int) -> str:
    return f"{done} / {total} files"


class ProgressTracker:
    """
    Forwards progress to the caller's callback for one strategy run.

    Fractions are clamped into [0, 1] and never move backwards, even when rsync's
    aggregate counter and the per-file line count disagree for a moment. An update
    that would go backwards re-reports the previous fraction together with its label.
    """

    def __init__(self, on_progress: Optional[ProgressCallback]):
        self.on_progress = on_progress
        self.last: Optional[ProgressUpdate] = None

    def emit(self, done: int, total: int, fraction: Optional[float] = None) -> ProgressUpdate:
        if fraction is None:
            fraction = done / total if total > 0 else 0.0
        fraction = min(1.0, max(0.0, fraction))
        if self.last is not None and fraction < self.last.fraction:
            # held back: repeat the last label so it still matches the fraction
            update = self.last
        else:
            update = ProgressUpdate(fraction=fraction, label=files_label(done, total))

        self.last = update
        if self.on_progress is not None:
            self.on_progress(update.fraction, update.label)
        return update


def _is_cancelled(cancel_token: Optional[threading.Event]) -> bool:
    return cancel_token is not None and cancel_token.is_set()


# -------------------------
# Requests / options
# -------------------------

def _is_subpath(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
        return True
    except ValueError:
        return False


@dataclass(frozen=True)
class SyncRequest:
    source: Path
    target: Path

    def validated(self) -> SyncRequest:
        """Return a copy with resolved paths, or raise ValueError if the pair can't be synced."""
        source = Path(self.source).expanduser().resolve()
        target = Path(self.target).expanduser().resolve()

        if not source.exists() or not source.is_dir():
            raise ValueError(f"Source folder does not exist or is not a folder: {source}")
        if not os.access(source, os.R_OK | os.X_OK):
            raise ValueError(f"Source folder is not readable: {source}")
        if source == target:
            raise ValueError("Source and target folders must be different.")
        if _is_subpath(target, source):
            raise ValueError("Target folder must NOT be inside source folder (would copy into itself).")
        if target.exists() and not target.is_dir():
            raise ValueError(f"Target exists and is not a folder: {target}")

        return SyncRequest(source=source, target=target)


@dataclass(frozen=True)
class SyncOptions:
    rsync_path: str = "rsync"
    use_rsync: bool = True
    excludes: tuple[str, ...] = ()


# -------------------------
# Ignore + enumeration
# -------------------------

class IgnoreMatcher:
    def __init__(self, root: Path, patterns: Sequence[str]):
        self.root = Path(root)
        self.patterns = list(patterns)
        self.spec = PathSpec.from_lines("gitwildmatch", self.patterns)

    def is_ignored(self, path: Path, is_dir: bool = False) -> bool:
        try:
            rel = Path(path).relative_to(self.root)
        except ValueError:
            return True
        rel_posix = rel.as_posix()
        if is_dir and not rel_posix.endswith("/"):
            rel_posix += "/"
        return self.spec.match_file(rel_posix)


def make_ignore(root: Path, patterns: Sequence[str]) -> Optional[IgnoreMatcher]:
    if not patterns:
        return None
    return IgnoreMatcher(root, patterns)


def walk(root: Path, ignore: Optional[IgnoreMatcher] = None) -> Iterator[tuple[Path, bool]]:
    """
    Yield (path, is_dir) for everything under root, depth-first, parents before
    children, siblings sorted by name.

    Symlinks to directories are neither yielded nor followed; symlinks to files are
    reported as files. Sockets, FIFOs and devices are skipped. Each call starts a
    fresh traversal. Raises OSError if a directory can't be listed.
    """
    root = Path(root)
    with os.scandir(root) as it:
        entries = sorted(it, key=lambda e: e.name)

    for entry in entries:
        path = root / entry.name
        if entry.is_dir(follow_symlinks=False):
            if ignore is not None and ignore.is_ignored(path, is_dir=True):
                continue
            yield path, True
            yield from walk(path, ignore)
        elif entry.is_file():
            if ignore is not None and ignore.is_ignored(path, is_dir=False):
                continue
            yield path, False


def count_files(root: Path, ignore: Optional[IgnoreMatcher] = None) -> int:
    return sum(1 for _, is_dir in walk(root, ignore) if not is_dir)


# -------------------------
# Manual copy
# -------------------------

@dataclass
class FileTally:
    new_files: int = 0
    updated_files: int = 0
    skipped_files: int = 0

    def summary(self) -> str:
        return (
            f"New files: {self.new_files}, "
            f"Updated files: {self.updated_files}, "
            f"Skipped files: {self.skipped_files}"
        )


def copy_new(src: Path, dst: Path) -> None:
    """Copy src to a dst that must not exist yet, then carry over mode and times."""
    with src.open("rb") as fsrc, dst.open("xb") as fdst:
        shutil.copyfileobj(fsrc, fdst)
    shutil.copystat(src, dst)


def sync_file(src: Path, dst: Path, tally: FileTally) -> str:
    """Bring one file up to date and return the action taken: COPY, UPDATE or SKIP."""
    dst.parent.mkdir(parents=True, exist_ok=True)
    src_mtime = src.stat().st_mtime_ns
    try:
        dst_stat = dst.stat()
    except FileNotFoundError:
        copy_new(src, dst)
        tally.new_files += 1
        return "COPY"

    if stat.S_ISDIR(dst_stat.st_mode):
        raise IsADirectoryError(errno.EISDIR, "Target path is a folder", str(dst))

    if src_mtime > dst_stat.st_mtime_ns:
        shutil.copy2(src, dst)
        tally.updated_files += 1
        return "UPDATE"

    tally.skipped_files += 1
    return "SKIP"


def run_manual_copy(
    source: Path,
    target: Path,
    on_progress: Optional[ProgressCallback] = None,
    cancel_token: Optional[threading.Event] = None,
    ignore: Optional[IgnoreMatcher] = None,
) -> SyncOutcome:
    source = Path(source)
    target = Path(target)
    progress = ProgressTracker(on_progress)
    tally = FileTally()
    processed = 0

    try:
        target.mkdir(parents=True, exist_ok=True)
        total = count_files(source, ignore)
        progress.emit(0, total)
        log.info("MANUAL: start %s -> %s (%d files)", source, target, total)

        for src_path, is_dir in walk(source, ignore):
            if _is_cancelled(cancel_token):
                log_action(log, "CANCEL", f"manual copy stopped at {processed} / {total} files")
                return Cancelled()

            dst_path = target / src_path.relative_to(source)
            if is_dir:
                dst_path.mkdir(parents=True, exist_ok=True)
                log_action(log, "MKDIR", str(dst_path), path=dst_path, is_dir=True, level=logging.DEBUG)
                continue

            action = sync_file(src_path, dst_path, tally)
            log_action(log, action, f"{src_path} -> {dst_path}", path=dst_path, is_dir=False, level=logging.DEBUG)

            processed += 1
            progress.emit(processed, total)
    except OSError as e:
        log_action(log, "FAIL", f"manual copy aborted after {processed} files | {e}", level=logging.ERROR)
        return Failed(message=str(e), kind=FailureKind.IO)

    log.info(
        "MANUAL: done - New: %d, Updated: %d, Skipped: %d",
        tally.new_files,
        tally.updated_files,
        tally.skipped_files,
    )
    return Completed(summary=f"{MANUAL_SUMMARY_HEADER}\n{tally.summary()}")


# -------------------------
# rsync output parsing
# -------------------------

# Aggregate counter printed by --progress on rsync >= 3.1:
#   "      1,024 100%    0.98MB/s    0:00:00 (xfr#3, to-chk=12/40)"
TO_CHK_RE = re.compile(r"to-chk=(\d+)/(\d+)")

# Combined transfer counter printed by older rsync releases:
#   "      1,024 100%    0.98MB/s    0:00:00 (xfer#3, to-check=12/40)"
XFER_TO_CHECK_RE = re.compile(r"xfe?r#(\d+),\s*to-check=(\d+)/(\d+)")

# Byte/percentage progress lines with no counter, e.g. "     32,768   8%   31.25MB/s    0:00:00"
PERCENT_LINE_RES = (
    re.compile(r"\s*[0-9,]+\s+\d+%.*"),
    re.compile(r".*\s+\d+%\s+.*"),
)

SUMMARY_MARKERS = ("file list", "sent ", "total size")
ERROR_PREFIXES = ("rsync:", "rsync error:")
DELETION_MARKER = "deleting "
MIN_FILE_LINE_LEN = 6


class LineKind(enum.Enum):
    COUNTER = "counter"
    FILE = "file"
    INFO = "info"


@dataclass(frozen=True)
class ParsedLine:
    kind: LineKind
    remaining: int = 0
    total: int = 0

    @property
    def completed(self) -> int:
        return self.total - self.remaining


def is_file_line(line: str) -> bool:
    """True when an rsync stdout line names a transferred file or directory."""
    if not line.strip() or len(line) < MIN_FILE_LINE_LEN:
        return False
    if any(p.match(line) for p in PERCENT_LINE_RES):
        return False
    if any(marker in line for marker in SUMMARY_MARKERS):
        return False
    if line.startswith(ERROR_PREFIXES):
        return False
    if DELETION_MARKER in line:
        return False
    return True


def parse_rsync_line(line: str) -> ParsedLine:
    m = TO_CHK_RE.search(line)
    if m:
        return ParsedLine(LineKind.COUNTER, remaining=int(m.group(1)), total=int(m.group(2)))

    m = XFER_TO_CHECK_RE.search(line)
    if m:
        return ParsedLine(LineKind.COUNTER, remaining=int(m.group(2)), total=int(m.group(3)))

    if is_file_line(line):
        return ParsedLine(LineKind.FILE)
    return ParsedLine(LineKind.INFO)


# -------------------------
# rsync strategy
# -------------------------

def build_rsync_command(
    source: Path,
    target: Path,
    rsync_path: str = "rsync",
    excludes: Sequence[str] = (),
) -> list[str]:
    # No --delete: files that only exist in the target stay where they are.
    cmd = [
        rsync_path,
        "-a",
        "-v",
        "--times",
        "--progress",
    ]
    cmd.extend(f"--exclude={pattern}" for pattern in excludes)

    # Trailing slash = copy contents, not the directory itself
    cmd.append(str(source).rstrip("/") + "/")
    cmd.append(str(target))
    return cmd


def _pump_lines(stream, name: str, sink: queue.Queue) -> None:
    try:
        for line in iter(stream.readline, ""):
            sink.put((name, line))
    except (OSError, ValueError) as e:
        log.debug("RSYNC: %s reader stopped: %s", name, e)
    finally:
        sink.put((name, None))


def _kill(process: subprocess.Popen) -> None:
    """Kill rsync and everything it forked (receiver, generator, ssh)."""
    if os.name == "posix":
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
    elif process.poll() is None:
        process.kill()
    process.wait()


def run_rsync(
    source: Path,
    target: Path,
    on_progress: Optional[ProgressCallback] = None,
    cancel_token: Optional[threading.Event] = None,
    rsync_path: str = "rsync",
    excludes: Sequence[str] = (),
) -> SyncOutcome:
    source = Path(source)
    target = Path(target)
    progress = ProgressTracker(on_progress)

    try:
        total_files = count_files(source, make_ignore(source, excludes))
        target.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        return Failed(message=str(e), kind=FailureKind.IO)

    progress.emit(0, total_files)

    cmd = build_rsync_command(source, target, rsync_path=rsync_path, excludes=excludes)
    log_action(log, "RSYNC", " ".join(cmd))
    try:
        process = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
            # own process group, so a cancel can take down rsync's children too
            start_new_session=(os.name == "posix"),
        )
    except OSError as e:
        log_action(log, "RSYNC", f"could not start {rsync_path} | {e}", level=logging.WARNING)
        return Failed(message=f"{rsync_path} unavailable: {e}", kind=FailureKind.TOOL_UNAVAILABLE)

    lines: queue.Queue = queue.Queue()
    readers = [
        threading.Thread(target=_pump_lines, args=(process.stdout, "stdout", lines), daemon=True),
        threading.Thread(target=_pump_lines, args=(process.stderr, "stderr", lines), daemon=True),
    ]
    stdout_lines: list[str] = []
    stderr_lines: list[str] = []
    processed = 0

    with process:
        for reader in readers:
            reader.start()
        try:
            open_streams = len(readers)
            while open_streams:
                if _is_cancelled(cancel_token):
                    _kill(process)
                    log_action(log, "CANCEL", f"rsync killed after {processed} / {total_files} files")
                    return Cancelled()
                try:
                    name, line = lines.get(timeout=POLL_INTERVAL_SEC)
                except queue.Empty:
                    continue
                if line is None:
                    open_streams -= 1
                    continue

                line = line.rstrip("\r\n")
                if name == "stderr":
                    stderr_lines.append(line)
                    continue

                stdout_lines.append(line)
                parsed = parse_rsync_line(line)
                if parsed.kind is LineKind.COUNTER:
                    if parsed.total > 0:
                        progress.emit(parsed.completed, parsed.total)
                elif parsed.kind is LineKind.FILE:
                    processed += 1
                    progress.emit(processed, total_files)

            while True:
                if _is_cancelled(cancel_token):
                    _kill(process)
                    log_action(log, "CANCEL", "rsync killed while exiting")
                    return Cancelled()
                try:
                    exit_code = process.wait(timeout=POLL_INTERVAL_SEC)
                    break
                except subprocess.TimeoutExpired:
                    continue
        finally:
            if process.poll() is None or os.name == "posix":
                _kill(process)
            for reader in readers:
                reader.join(timeout=5.0)

    if exit_code != 0:
        stderr_text = "\n".join(stderr_lines).strip()
        log_action(log, "RSYNC", f"exit code {exit_code}", level=logging.WARNING)
        return Failed(message=f"exit code {exit_code}: {stderr_text}", kind=FailureKind.SUBPROCESS)

    progress.emit(total_files, total_files, fraction=1.0)
    log.info("RSYNC: completed successfully")
    output = "\n".join(stdout_lines)
    return Completed(summary=f"{RSYNC_SUMMARY_HEADER}\n{output}")


# -------------------------
# Coordinator
# -------------------------

class SyncState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


_TERMINAL_STATES = {
    Completed: SyncState.COMPLETED,
    Cancelled: SyncState.CANCELLED,
    Failed: SyncState.FAILED,
}


class SyncCoordinator:
    """
    Runs one sync at a time: rsync first, the manual copy when rsync fails.

    A cancelled rsync run is final; it never triggers the fallback. cancel() also
    applies to a run that hasn't started yet: the token is only replaced once a
    run has finished. Overlapping calls on one coordinator are not supported.
    """

    def __init__(self, options: Optional[SyncOptions] = None):
        self.options = options or SyncOptions()
        self.state = SyncState.IDLE
        self.outcome: Optional[SyncOutcome] = None
        self.cancel_token = threading.Event()

    def cancel(self) -> None:
        self.cancel_token.set()

    def perform_sync(
        self,
        request: SyncRequest,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[threading.Event] = None,
        on_start: Optional[Callable[[], None]] = None,
    ) -> SyncOutcome:
        if cancel_token is not None:
            if self.cancel_token.is_set():
                cancel_token.set()
            self.cancel_token = cancel_token
        self.state = SyncState.RUNNING
        self.outcome = None
        if on_start is not None:
            on_start()

        try:
            outcome = self._run(request, on_progress)
        finally:
            self.cancel_token = threading.Event()

        self.outcome = outcome
        self.state = _TERMINAL_STATES[type(outcome)]
        return outcome

    def _run(self, request: SyncRequest, on_progress: Optional[ProgressCallback]) -> SyncOutcome:
        try:
            request = request.validated()
        except ValueError as e:
            log_action(log, "FAIL", str(e), level=logging.ERROR)
            return Failed(message=str(e), kind=FailureKind.INVALID_REQUEST)

        excludes = self.options.excludes
        if self.options.use_rsync:
            log.info("SYNC: attempting rsync %s -> %s", request.source, request.target)
            outcome = run_rsync(
                request.source,
                request.target,
                on_progress,
                self.cancel_token,
                rsync_path=self.options.rsync_path,
                excludes=excludes,
            )
            if not isinstance(outcome, Failed):
                return outcome
            log_action(
                log,
                "FALLBACK",
                f"rsync failed ({outcome.message}), falling back to manual copy",
                level=logging.WARNING,
            )

        return run_manual_copy(
            request.source,
            request.target,
            on_progress,
            self.cancel_token,
            ignore=make_ignore(request.source, excludes),
        )


def perform_sync(
    source: Union[str, Path],
    target: Union[str, Path],
    on_progress: Optional[ProgressCallback] = None,
    cancel_token: Optional[threading.Event] = None,
    options: Optional[SyncOptions] = None,
    on_start: Optional[Callable[[], None]] = None,
) -> SyncOutcome:
    """Sync source into target and return Completed, Cancelled or Failed. Never raises for sync errors."""
    coordinator = SyncCoordinator(options)
    request = SyncRequest(source=Path(source), target=Path(target))
    return coordinator.perform_sync(request, on_progress, cancel_token=cancel_token, on_start=on_start)


# -------------------------
# Config / CLI
# -------------------------

@dataclass(frozen=True)
class AppConfig:
    source_dir: Path
    target_dir: Path
    log_dir: Path
    excludes: tuple[str, ...] = ()
    rsync_path: str = "rsync"
    use_rsync: bool = True
    watch: bool = False
    debounce_sec: float = DEFAULT_DEBOUNCE_SEC
    verbose: bool = False

    def sync_options(self) -> SyncOptions:
        return SyncOptions(rsync_path=self.rsync_path, use_rsync=self.use_rsync, excludes=self.excludes)


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Copy new and updated files from one folder into another.")
    p.add_argument("--source", type=str, default=None, help="Folder to copy from.")
    p.add_argument("--target", type=str, default=None, help="Folder to copy into (created if missing).")
    p.add_argument("--log-dir", type=str, default=".", help="Directory for log files.")
    p.add_argument(
        "--exclude",
        action="append",
        default=[],
        metavar="PATTERN",
        help="gitignore-style pattern to leave out (repeatable).",
    )
    p.add_argument("--rsync", type=str, default="rsync", help="rsync executable to try first.")
    p.add_argument("--no-rsync", action="store_true", help="Skip rsync and use the built-in copy.")
    p.add_argument("--watch", action="store_true", help="Keep running and re-sync when the source changes.")
    p.add_argument(
        "--debounce",
        type=float,
        default=DEFAULT_DEBOUNCE_SEC,
        help="Seconds of quiet before a watch-triggered re-sync.",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Log every file decision.")
    return p.parse_args(argv)


def prompt_for_path(label: str) -> Path:
    while True:
        raw = input(f"{label}: ").strip().strip('"')
        if raw:
            return Path(raw)
        print("Please enter a non-empty path.")


def build_effective_config(args: argparse.Namespace) -> AppConfig:
    source = Path(args.source) if args.source else prompt_for_path("Source folder")
    target = Path(args.target) if args.target else prompt_for_path("Target folder")

    return AppConfig(
        source_dir=source,
        target_dir=target,
        log_dir=Path(args.log_dir),
        excludes=tuple(args.exclude),
        rsync_path=args.rsync,
        use_rsync=not args.no_rsync,
        watch=args.watch,
        debounce_sec=max(0.0, float(args.debounce)),
        verbose=args.verbose,
    )


class ConsoleProgress:
    """Redraws a single status line; does nothing when the stream isn't a terminal."""

    BAR_WIDTH = 30

    def __init__(self, stream=None):
        self.stream = stream if stream is not None else sys.stdout
        self.enabled = _supports_color(self.stream)
        self._width = 0

    def __call__(self, fraction: float, label: str) -> None:
        if not self.enabled:
            return
        filled = int(round(fraction * self.BAR_WIDTH))
        text = f"[{'#' * filled}{'.' * (self.BAR_WIDTH - filled)}] {fraction * 100:5.1f}%  {label}"
        self.stream.write("\r" + text.ljust(self._width))
        self.stream.flush()
        self._width = len(text)

    def finish(self) -> None:
        if self.enabled and self._width:
            self.stream.write("\n")
            self.stream.flush()
        self._width = 0


def run_interruptible(
    coordinator: SyncCoordinator,
    request: SyncRequest,
    on_progress: Optional[ProgressCallback] = None,
) -> SyncOutcome:
    """Run a sync on a worker thread so Ctrl+C in the main thread can cancel it."""
    result: list[SyncOutcome] = []
    cancel_token = threading.Event()

    def _work() -> None:
        result.append(coordinator.perform_sync(request, on_progress, cancel_token=cancel_token))

    worker = threading.Thread(target=_work, name="folder-sync", daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(timeout=0.5)
    except KeyboardInterrupt:
        cancel_token.set()
        worker.join()

    if not result:
        return Failed(message="sync worker stopped unexpectedly", kind=FailureKind.IO)
    return result[0]


def report_outcome(logger: logging.Logger, outcome: SyncOutcome) -> int:
    if isinstance(outcome, Completed):
        logger.info("Sync completed successfully!\n%s", outcome.summary)
        return 0
    if isinstance(outcome, Cancelled):
        log_action(logger, "CANCEL", "Sync cancelled by user")
        return 130
    logger.error("Error: %s", outcome.message)
    return 1


def sync_once(
    logger: logging.Logger,
    coordinator: SyncCoordinator,
    request: SyncRequest,
) -> tuple[SyncOutcome, int]:
    progress = ConsoleProgress()
    outcome = run_interruptible(coordinator, request, progress)
    progress.finish()
    return outcome, report_outcome(logger, outcome)


# -------------------------
# Watch mode
# -------------------------

class ChangeHandler(FileSystemEventHandler):
    """
    Marks the source tree dirty on created/modified/moved events.

    Deletions are ignored since a sync never removes anything from the target.
    """

    def __init__(self, source_root: Path, ignore: Optional[IgnoreMatcher] = None):
        self.source_root = source_root
        self.ignore = ignore
        self.dirty = threading.Event()
        self._last_event = 0.0
        self._guard = threading.Lock()

    def _touch(self, path: Path, is_dir: bool) -> None:
        if self.ignore is not None and self.ignore.is_ignored(path, is_dir=is_dir):
            return
        with self._guard:
            self._last_event = time.monotonic()
        self.dirty.set()

    def on_created(self, event):
        self._touch(Path(os.fsdecode(event.src_path)), bool(event.is_directory))

    def on_modified(self, event):
        if event.is_directory:
            return
        self._touch(Path(os.fsdecode(event.src_path)), False)

    def on_moved(self, event):
        self._touch(Path(os.fsdecode(event.dest_path)), bool(event.is_directory))

    def take_pending(self, debounce_sec: float) -> bool:
        """True once per burst of changes, after debounce_sec without new events."""
        if not self.dirty.is_set():
            return False
        with self._guard:
            quiet_for = time.monotonic() - self._last_event
        if quiet_for < debounce_sec:
            return False
        self.dirty.clear()
        return True


def watch_and_sync(
    cfg: AppConfig,
    logger: logging.Logger,
    coordinator: SyncCoordinator,
    request: SyncRequest,
) -> int:
    handler = ChangeHandler(request.source, make_ignore(request.source, cfg.excludes))
    observer = Observer()
    observer.schedule(handler, str(request.source), recursive=True)

    logger.info("Watching %s for changes... (Ctrl+C to stop)", request.source)
    observer.start()

    exit_code = 0
    try:
        while True:
            time.sleep(WATCH_POLL_SEC)
            if not handler.take_pending(cfg.debounce_sec):
                continue
            logger.info("Changes detected, syncing...")
            outcome, exit_code = sync_once(logger, coordinator, request)
            if isinstance(outcome, Cancelled):
                break
    except KeyboardInterrupt:
        logger.info("Stopping...")
    finally:
        observer.stop()
        observer.join(timeout=10)
        logger.info("Stopped.")
    return exit_code


# -------------------------
# Main
# -------------------------

def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    cfg = build_effective_config(args)

    logger = setup_logger(cfg.log_dir, verbose=cfg.verbose)

    try:
        request = SyncRequest(cfg.source_dir, cfg.target_dir).validated()
        logger.info("Source: %s", request.source)
        logger.info("Target: %s", request.target)
    except ValueError as e:
        logger.error("Config error: %s", e)
        return 2

    coordinator = SyncCoordinator(cfg.sync_options())
    outcome, exit_code = sync_once(logger, coordinator, request)

    if not cfg.watch or isinstance(outcome, Cancelled):
        return exit_code
    return watch_and_sync(cfg, logger, coordinator, request)


if __name__ == "__main__":
    raise SystemExit(main())
