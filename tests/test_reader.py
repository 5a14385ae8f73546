"""Tests for the incremental JSONL reader."""

import os

import pytest

from tailpipe.errors import FileReadError
from tailpipe.watcher import reader as reader_module
from tailpipe.watcher.reader import IncrementalReader, scan_lines


@pytest.fixture
def reader():
    return IncrementalReader()


@pytest.fixture
def log_file(tmp_path):
    return tmp_path / "session.jsonl"


def _records(reader, path):
    return [p.record for p in reader.read(path) if p.ok]


# ------------------------------------------------------------------
# Incremental reads
# ------------------------------------------------------------------


class TestIncrementalRead:
    def test_reads_whole_file_first_time(self, reader, log_file, write_jsonl):
        write_jsonl(log_file, {"a": 1}, {"a": 2})
        assert _records(reader, log_file) == [{"a": 1}, {"a": 2}]
        assert reader.get_position(log_file) == log_file.stat().st_size

    def test_only_new_lines_on_second_read(self, reader, log_file, write_jsonl):
        write_jsonl(log_file, {"a": 1})
        _records(reader, log_file)
        write_jsonl(log_file, {"a": 2}, {"a": 3})
        assert _records(reader, log_file) == [{"a": 2}, {"a": 3}]

    def test_no_new_data_yields_nothing(self, reader, log_file, write_jsonl):
        write_jsonl(log_file, {"a": 1})
        _records(reader, log_file)
        offset = reader.get_position(log_file)
        assert _records(reader, log_file) == []
        assert reader.get_position(log_file) == offset

    def test_offset_never_decreases_while_appending(self, reader, log_file, write_jsonl):
        offsets = []
        for i in range(5):
            write_jsonl(log_file, {"i": i})
            _records(reader, log_file)
            offsets.append(reader.get_position(log_file))
        assert offsets == sorted(offsets)
        assert len(set(offsets)) == 5

    def test_empty_file(self, reader, log_file):
        log_file.write_text("")
        assert _records(reader, log_file) == []
        assert reader.get_position(log_file) == 0


class TestPartialLines:
    def test_trailing_partial_line_is_deferred(self, reader, log_file):
        log_file.write_bytes(b'{"x":1}\n{"x":2}')
        assert _records(reader, log_file) == [{"x": 1}]
        assert reader.get_position(log_file) == len(b'{"x":1}\n')

        with open(log_file, "ab") as f:
            f.write(b"\n")
        assert _records(reader, log_file) == [{"x": 2}]

    def test_completed_line_and_new_line_each_yielded_once(self, reader, log_file):
        log_file.write_bytes(b'{"x":1}\n{"x":2}')
        assert _records(reader, log_file) == [{"x": 1}]

        with open(log_file, "ab") as f:
            f.write(b'\n{"x":3}\n')
        assert _records(reader, log_file) == [{"x": 2}, {"x": 3}]
        assert _records(reader, log_file) == []

    def test_partial_line_only(self, reader, log_file):
        log_file.write_bytes(b'{"x":')
        assert _records(reader, log_file) == []
        assert reader.get_position(log_file) == 0

        with open(log_file, "ab") as f:
            f.write(b'5}\n')
        assert _records(reader, log_file) == [{"x": 5}]

    def test_partial_line_is_never_reported_as_parse_error(self, reader, log_file):
        log_file.write_bytes(b'{"x":1}\n{"x"')
        parsed = list(reader.read(log_file))
        assert [p.ok for p in parsed] == [True]


class TestTruncation:
    def test_truncated_file_is_read_from_start(self, reader, log_file, write_jsonl):
        write_jsonl(log_file, {"a": 1}, {"a": 2}, {"a": 3})
        _records(reader, log_file)

        log_file.write_text('{"b":1}\n')
        assert _records(reader, log_file) == [{"b": 1}]
        assert reader.get_position(log_file) == log_file.stat().st_size

    def test_line_numbers_restart_after_truncation(self, reader, log_file, write_jsonl):
        write_jsonl(log_file, {"a": 1}, {"a": 2})
        list(reader.read(log_file))
        log_file.write_text('{"b":1}\n')
        [parsed] = list(reader.read(log_file))
        assert parsed.line_number == 1


# ------------------------------------------------------------------
# Line handling
# ------------------------------------------------------------------


class TestLineHandling:
    def test_parse_error_does_not_stop_the_read(self, reader, log_file):
        log_file.write_text('{"a":1}\nnot json\n{"a":3}\n')
        parsed = list(reader.read(log_file))

        assert [p.ok for p in parsed] == [True, False, True]
        assert parsed[1].text == "not json"
        assert parsed[1].line_number == 2
        assert parsed[1].error
        assert reader.get_position(log_file) == log_file.stat().st_size

    def test_blank_lines_skipped_but_counted(self, reader, log_file):
        log_file.write_text('{"a":1}\n\n   \n{"a":4}\n')
        parsed = list(reader.read(log_file))
        assert [p.record for p in parsed] == [{"a": 1}, {"a": 4}]
        assert [p.line_number for p in parsed] == [1, 4]

    def test_crlf_line_endings(self, reader, log_file):
        log_file.write_bytes(b'{"a":1}\r\n{"a":2}\r\n')
        assert _records(reader, log_file) == [{"a": 1}, {"a": 2}]

    def test_invalid_utf8_is_a_parse_error(self, reader, log_file):
        log_file.write_bytes(b'\xff\xfe\n{"a":2}\n')
        parsed = list(reader.read(log_file))
        assert not parsed[0].ok
        assert parsed[1].record == {"a": 2}

    def test_line_numbers_continue_across_reads(self, reader, log_file, write_jsonl):
        write_jsonl(log_file, {"a": 1}, {"a": 2})
        list(reader.read(log_file))
        write_jsonl(log_file, {"a": 3})
        [parsed] = list(reader.read(log_file))
        assert parsed.line_number == 3

    def test_non_object_json_values(self, reader, log_file):
        log_file.write_text('[1, 2]\n"text"\n42\n')
        assert _records(reader, log_file) == [[1, 2], "text", 42]


# ------------------------------------------------------------------
# Errors and guards
# ------------------------------------------------------------------


class TestErrors:
    def test_missing_file_raises_and_keeps_offset(self, reader, log_file, write_jsonl):
        write_jsonl(log_file, {"a": 1})
        _records(reader, log_file)
        offset = reader.get_position(log_file)

        log_file.unlink()
        with pytest.raises(FileReadError):
            list(reader.read(log_file))
        assert reader.get_position(log_file) == offset

    def test_abandoned_iteration_does_not_commit(self, reader, log_file, write_jsonl):
        write_jsonl(log_file, {"a": 1}, {"a": 2})
        lines = reader.read(log_file)
        next(lines)
        lines.close()

        assert reader.get_position(log_file) == 0
        assert not reader.busy
        assert _records(reader, log_file) == [{"a": 1}, {"a": 2}]

    def test_busy_reader_ignores_second_read(self, reader, tmp_path, write_jsonl):
        first = tmp_path / "a.jsonl"
        second = tmp_path / "b.jsonl"
        write_jsonl(first, {"a": 1}, {"a": 2})
        write_jsonl(second, {"b": 1})

        lines = reader.read(first)
        next(lines)
        assert reader.busy
        assert list(reader.read(second)) == []
        assert reader.get_position(second) == 0

        list(lines)
        assert not reader.busy
        assert _records(reader, second) == [{"b": 1}]


# ------------------------------------------------------------------
# Position table
# ------------------------------------------------------------------


class TestPositions:
    def test_initialize_position_skips_existing_content(self, reader, log_file, write_jsonl):
        write_jsonl(log_file, {"old": 1}, {"old": 2})
        watched = reader.initialize_position(log_file)

        assert watched.last_read_offset == log_file.stat().st_size
        assert watched.line_count == 2
        assert _records(reader, log_file) == []

        write_jsonl(log_file, {"new": 1})
        [parsed] = list(reader.read(log_file))
        assert parsed.record == {"new": 1}
        assert parsed.line_number == 3

    def test_initialize_missing_file_raises(self, reader, tmp_path):
        with pytest.raises(FileReadError):
            reader.initialize_position(tmp_path / "nope.jsonl")

    def test_reset_position(self, reader, log_file, write_jsonl):
        write_jsonl(log_file, {"a": 1})
        _records(reader, log_file)
        reader.reset_position(log_file)
        assert reader.get_position(log_file) == 0
        assert _records(reader, log_file) == [{"a": 1}]

    def test_reset_all_positions(self, reader, tmp_path, write_jsonl):
        paths = [tmp_path / "a.jsonl", tmp_path / "b.jsonl"]
        for p in paths:
            write_jsonl(p, {"p": p.name})
            _records(reader, p)
        reader.reset_all_positions()
        assert reader.positions == {}

    def test_positions_is_a_snapshot(self, reader, log_file, write_jsonl):
        write_jsonl(log_file, {"a": 1})
        _records(reader, log_file)
        snapshot = reader.positions
        snapshot[log_file].last_read_offset = 0
        assert reader.get_position(log_file) > 0


class TestBufferingDisabled:
    def test_rereads_whole_file_each_time(self, log_file, write_jsonl):
        reader = IncrementalReader(enable_buffering=False)
        write_jsonl(log_file, {"a": 1})
        assert _records(reader, log_file) == [{"a": 1}]
        write_jsonl(log_file, {"a": 2})
        assert _records(reader, log_file) == [{"a": 1}, {"a": 2}]

    def test_toggle_at_runtime(self, reader, log_file, write_jsonl):
        write_jsonl(log_file, {"a": 1})
        _records(reader, log_file)
        reader.enable_buffering = False
        assert _records(reader, log_file) == [{"a": 1}]


def test_scan_lines_respects_limit(tmp_path):
    path = tmp_path / "f.jsonl"
    path.write_bytes(b"a\nb\nc\n")
    assert scan_lines(path, 4) == (2, 4)
    assert scan_lines(path, 6) == (3, 6)
    assert scan_lines(path, 5) == (2, 4)


def test_scan_lines_across_chunks(tmp_path, monkeypatch):
    monkeypatch.setattr(reader_module, "READ_CHUNK_SIZE", 3)
    path = tmp_path / "f.jsonl"
    path.write_bytes(b"abcd\nef\ngh")
    assert scan_lines(path, 10) == (2, 8)


# ------------------------------------------------------------------
# Chunked reads
# ------------------------------------------------------------------


class TestChunkedRead:
    @pytest.fixture(autouse=True)
    def _tiny_chunks(self, monkeypatch):
        monkeypatch.setattr(reader_module, "READ_CHUNK_SIZE", 8)

    def test_lines_crossing_chunk_boundaries(self, reader, log_file, write_jsonl):
        records = [{"n": i, "pad": "x" * i} for i in range(6)]
        write_jsonl(log_file, *records)

        parsed = list(reader.read(log_file))

        assert [p.record for p in parsed] == records
        assert [p.line_number for p in parsed] == [1, 2, 3, 4, 5, 6]
        assert reader.get_position(log_file) == log_file.stat().st_size

    def test_partial_line_spanning_chunks_is_deferred(self, reader, log_file):
        log_file.write_bytes(b'{"x":1}\n{"long":"abcdefghijklmnop"')
        assert _records(reader, log_file) == [{"x": 1}]
        assert reader.get_position(log_file) == len(b'{"x":1}\n')

        with open(log_file, "ab") as f:
            f.write(b"}\n")
        assert _records(reader, log_file) == [{"long": "abcdefghijklmnop"}]

    def test_crlf_split_across_chunks(self, reader, log_file):
        log_file.write_bytes(b'{"a":12}\r\n{"b":2}\r\n')
        assert _records(reader, log_file) == [{"a": 12}, {"b": 2}]

    def test_first_line_yielded_before_file_is_consumed(self, reader, log_file, write_jsonl):
        write_jsonl(log_file, *({"n": i} for i in range(50)))
        lines = reader.read(log_file)
        first = next(lines)
        assert first.record == {"n": 0}
        assert reader.get_position(log_file) == 0
        lines.close()


# ------------------------------------------------------------------
# Replaced files
# ------------------------------------------------------------------


class TestReplacedFile:
    def test_atomic_replace_reads_from_start(self, reader, log_file, write_jsonl):
        write_jsonl(log_file, {"old": 1}, {"old": 2})
        _records(reader, log_file)

        tmp = log_file.with_suffix(".tmp")
        write_jsonl(tmp, {"new": 1}, {"new": 2}, {"new": 3})
        os.replace(tmp, log_file)

        parsed = list(reader.read(log_file))
        assert [p.record for p in parsed] == [{"new": 1}, {"new": 2}, {"new": 3}]
        assert parsed[0].line_number == 1

    def test_identity_recorded(self, reader, log_file, write_jsonl):
        write_jsonl(log_file, {"a": 1})
        _records(reader, log_file)
        watched = reader.positions[log_file]
        st = log_file.stat()
        assert (watched.device, watched.inode) == (st.st_dev, st.st_ino)

    def test_initialize_position_stops_before_partial_line(self, reader, log_file):
        log_file.write_bytes(b'{"old":1}\n{"torn":')
        watched = reader.initialize_position(log_file)

        assert watched.last_read_offset == len(b'{"old":1}\n')
        assert watched.line_count == 1

        with open(log_file, "ab") as f:
            f.write(b'true}\n')
        parsed = list(reader.read(log_file))
        assert [p.ok for p in parsed] == [True]
        assert parsed[0].record == {"torn": True}
        assert parsed[0].line_number == 2
