"""Shared pytest fixtures for folder_sync tests."""

import logging
import os
import stat
import sys
import textwrap

import pytest

import folder_sync

# Fixed epoch timestamps (ns) so freshness comparisons are deterministic.
BASE_MTIME_NS = 1_700_000_000 * 1_000_000_000
ONE_SECOND_NS = 1_000_000_000


def set_mtime(path, mtime_ns):
    os.utime(path, ns=(mtime_ns, mtime_ns))


@pytest.fixture
def make_tree():
    """Factory fixture: write {relative_path: content} under root, all with one mtime."""

    def _make_tree(root, files, mtime_ns=BASE_MTIME_NS):
        root.mkdir(parents=True, exist_ok=True)
        for rel, content in files.items():
            path = root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
            set_mtime(path, mtime_ns)
        return root

    return _make_tree


@pytest.fixture
def progress_log():
    """Callable that records every (fraction, label) it receives in .updates."""

    class _Recorder:
        def __init__(self):
            self.updates = []

        def __call__(self, fraction, label):
            self.updates.append((fraction, label))

        @property
        def fractions(self):
            return [f for f, _ in self.updates]

    return _Recorder()


@pytest.fixture
def fake_rsync(tmp_path):
    """Factory fixture: write an executable stand-in for rsync that replays canned output."""
    if sys.platform == "win32":
        pytest.skip("fake rsync script needs a POSIX shebang")

    def _fake_rsync(stdout_lines=(), stderr_lines=(), exit_code=0, sleep_sec=0.0, child_sleep_sec=None):
        script = tmp_path / "fake-rsync"
        script.write_text(
            textwrap.dedent(
                f"""\
                #!{sys.executable}
                import subprocess
                import sys
                import time

                if {child_sleep_sec!r} is not None:
                    # a forked helper that shares our stdout/stderr, like rsync's receiver
                    subprocess.Popen([sys.executable, "-c", "import time; time.sleep({child_sleep_sec!r})"])
                for line in {list(stdout_lines)!r}:
                    print(line, flush=True)
                for line in {list(stderr_lines)!r}:
                    print(line, file=sys.stderr, flush=True)
                time.sleep({sleep_sec!r})
                sys.exit({exit_code!r})
                """
            ),
            encoding="utf-8",
        )
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(script)

    return _fake_rsync


@pytest.fixture
def reset_logger():
    """Remove handlers that setup_logger attached to the shared folder_sync logger."""
    yield logging.getLogger(folder_sync.LOGGER_NAME)
    logger = logging.getLogger(folder_sync.LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
