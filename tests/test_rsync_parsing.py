"""Tests for the rsync output parsing rules."""

import pytest

from folder_sync import (
    TO_CHK_RE,
    XFER_TO_CHECK_RE,
    LineKind,
    ParsedLine,
    ProgressTracker,
    ProgressUpdate,
    is_file_line,
    parse_rsync_line,
)


class TestCounterRules:
    def test_to_chk_line(self):
        parsed = parse_rsync_line("      1,024 100%    0.98MB/s    0:00:00 (xfr#3, to-chk=12/40)")

        assert parsed == ParsedLine(LineKind.COUNTER, remaining=12, total=40)
        assert parsed.completed == 28

    def test_old_xfer_to_check_line(self):
        parsed = parse_rsync_line("      1,024 100%    0.98MB/s    0:00:00 (xfer#3, to-check=5/9)")

        assert parsed == ParsedLine(LineKind.COUNTER, remaining=5, total=9)
        assert parsed.completed == 4

    def test_to_chk_wins_over_combined_counter(self):
        line = "(xfr#7, to-chk=1/8)"
        assert TO_CHK_RE.search(line)
        assert XFER_TO_CHECK_RE.search(line) is None
        assert parse_rsync_line(line).remaining == 1

    def test_zero_total_is_still_a_counter(self):
        assert parse_rsync_line("to-chk=0/0").kind is LineKind.COUNTER


class TestFileLines:
    @pytest.mark.parametrize(
        "line",
        [
            "docs/readme.md",
            "photos/2023/IMG_0001.jpg",
            "notes.txt",
            "subdir/",
        ],
    )
    def test_transferred_names(self, line):
        assert is_file_line(line)
        assert parse_rsync_line(line).kind is LineKind.FILE

    @pytest.mark.parametrize(
        "line",
        [
            "",
            "     ",
            "a.txt",
            "./",
            "     32,768   8%   31.25MB/s    0:00:00",
            "  1,048,576 100%  120.00MB/s    0:00:00",
            "sending incremental file list",
            "building file list ... done",
            "sent 1,234 bytes  received 35 bytes  2,538.00 bytes/sec",
            "total size is 10,240  speedup is 8.07",
            "rsync: link_stat \"/nope\" failed: No such file or directory (2)",
            "rsync error: some files/attrs were not transferred (code 23)",
            "deleting old/file.txt",
        ],
    )
    def test_informational_lines(self, line):
        assert not is_file_line(line)
        assert parse_rsync_line(line).kind is LineKind.INFO


class TestProgressTracker:
    def test_clamped_update_repeats_previous_label(self):
        seen = []
        tracker = ProgressTracker(lambda fraction, label: seen.append((fraction, label)))

        tracker.emit(2, 3)
        tracker.emit(1, 2)

        assert seen == [(pytest.approx(2 / 3), "2 / 3 files"), (pytest.approx(2 / 3), "2 / 3 files")]

    def test_fraction_is_clamped_to_one(self):
        tracker = ProgressTracker(None)

        update = tracker.emit(5, 4)

        assert update == ProgressUpdate(1.0, "5 / 4 files")

    def test_zero_total(self):
        assert ProgressTracker(None).emit(0, 0) == ProgressUpdate(0.0, "0 / 0 files")
