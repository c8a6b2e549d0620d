"""Unit tests for the local activity log aggregator."""

import json
import pytest
from datetime import datetime, timezone
from pathlib import Path

from usage_sentinel.logs.aggregator import LogAggregator, default_candidate_dirs


class TestCandidateDirs:
    """Tests for data directory discovery."""

    def test_env_entries_come_first(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CLAUDE_CONFIG_DIR", f" {tmp_path / 'a'} ,, {tmp_path / 'b'}")

        candidates = default_candidate_dirs()

        assert candidates[0] == tmp_path / "a"
        assert candidates[1] == tmp_path / "b"
        assert candidates[2] == Path.home() / ".config" / "claude" / "projects"
        assert candidates[3] == Path.home() / ".claude" / "projects"

    def test_without_env(self, monkeypatch):
        monkeypatch.delenv("CLAUDE_CONFIG_DIR", raising=False)
        assert len(default_candidate_dirs()) == 2

    @pytest.mark.asyncio
    async def test_first_existing_directory_wins(self, tmp_path, log_dir):
        aggregator = LogAggregator(candidate_dirs=[tmp_path / "missing", log_dir])
        assert await aggregator.find_data_directory() == log_dir

    @pytest.mark.asyncio
    async def test_no_directory(self, tmp_path):
        aggregator = LogAggregator(candidate_dirs=[tmp_path / "missing"])
        assert await aggregator.find_data_directory() is None


class TestValidation:
    """Tests for record validation."""

    def test_valid_record(self, log_entry):
        assert LogAggregator.is_valid_record(log_entry())

    def test_synthetic_model_rejected(self, log_entry):
        assert not LogAggregator.is_valid_record(log_entry(model="<synthetic>"))

    def test_api_error_rejected(self, log_entry):
        assert not LogAggregator.is_valid_record(log_entry(isApiErrorMessage=True))

    @pytest.mark.parametrize("raw", [
        None,
        [],
        {"type": "user"},
        {"message": "text"},
        {"message": {"usage": None}},
        {"message": {"usage": {"input_tokens": 1}}},
        {"message": {"usage": {"input_tokens": "1", "output_tokens": 2}}},
        {"message": {"usage": {"input_tokens": True, "output_tokens": 2}}},
        {"message": {"usage": {"input_tokens": float("inf"), "output_tokens": 2}}},
        {"message": {"usage": {"input_tokens": 1, "output_tokens": float("nan")}}},
    ])
    def test_invalid_shapes(self, raw):
        assert not LogAggregator.is_valid_record(raw)


class TestParsing:
    """Tests for file discovery and parsing."""

    @pytest.mark.asyncio
    async def test_discovers_nested_jsonl_files(self, log_dir, log_entry, write_jsonl):
        write_jsonl(log_dir / "proj-b" / "s2.jsonl", [log_entry()])
        write_jsonl(log_dir / "proj-a" / "s1.jsonl", [log_entry()])
        (log_dir / "proj-a" / "notes.txt").write_text("ignored")

        files = await LogAggregator().discover_log_files(log_dir)

        assert files == [
            log_dir / "proj-a" / "s1.jsonl",
            log_dir / "proj-b" / "s2.jsonl",
        ]

    @pytest.mark.asyncio
    async def test_malformed_lines_are_skipped(self, log_dir, log_entry, write_jsonl, caplog):
        path = write_jsonl(
            log_dir / "s.jsonl",
            [log_entry(message_id="m1"), log_entry(message_id="m2")],
            raw_lines=["{not json", "", json.dumps(log_entry(message_id="m3"))],
        )

        records = await LogAggregator().parse_file(path)

        assert [r.message_id for r in records] == ["m1", "m2", "m3"]
        assert "malformed" in caplog.text

    @pytest.mark.asyncio
    async def test_unreadable_file_yields_nothing(self, tmp_path):
        assert await LogAggregator().parse_file(tmp_path / "gone.jsonl") == []

    @pytest.mark.asyncio
    async def test_timestamps_are_parsed(self, log_dir, log_entry, write_jsonl):
        path = write_jsonl(log_dir / "s.jsonl", [log_entry(timestamp="2025-11-03T10:00:00.123Z")])

        records = await LogAggregator().parse_file(path)

        assert records[0].timestamp == datetime(2025, 11, 3, 10, 0, 0, 123000, tzinfo=timezone.utc)


class TestAggregate:
    """Tests for aggregation and deduplication."""

    @pytest.mark.asyncio
    async def test_sums_all_categories(self, log_dir, log_entry, write_jsonl):
        write_jsonl(log_dir / "s.jsonl", [
            log_entry(message_id="m1", request_id="r1", input_tokens=100, output_tokens=50,
                      cache_creation=10, cache_read=5),
            log_entry(message_id="m2", request_id="r2", input_tokens=1, output_tokens=2),
        ])

        usage = await LogAggregator(candidate_dirs=[log_dir]).aggregate()

        assert usage.input_tokens == 101
        assert usage.output_tokens == 52
        assert usage.cache_creation_tokens == 10
        assert usage.cache_read_tokens == 5
        assert usage.total_tokens == 168
        assert usage.record_count == 2

    @pytest.mark.asyncio
    async def test_duplicates_across_files_count_once(self, log_dir, log_entry, write_jsonl):
        entry = log_entry(message_id="m1", request_id="r1")
        write_jsonl(log_dir / "a" / "one.jsonl", [entry])
        write_jsonl(log_dir / "b" / "two.jsonl", [entry, entry])

        usage = await LogAggregator(candidate_dirs=[log_dir]).aggregate()

        assert usage.record_count == 1
        assert usage.total_tokens == 150

    @pytest.mark.asyncio
    async def test_same_message_different_request_counts_twice(self, log_dir, log_entry, write_jsonl):
        write_jsonl(log_dir / "s.jsonl", [
            log_entry(message_id="m1", request_id="r1"),
            log_entry(message_id="m1", request_id="r2"),
        ])

        usage = await LogAggregator(candidate_dirs=[log_dir]).aggregate()

        assert usage.record_count == 2

    @pytest.mark.asyncio
    async def test_idempotent(self, log_dir, log_entry, write_jsonl):
        write_jsonl(log_dir / "s.jsonl", [log_entry(message_id=f"m{i}", request_id=f"r{i}") for i in range(5)])
        aggregator = LogAggregator(candidate_dirs=[log_dir])

        first = await aggregator.aggregate()
        second = await aggregator.aggregate()

        assert first == second

    @pytest.mark.asyncio
    async def test_appending_a_record_adds_exactly_its_tokens(self, log_dir, log_entry, write_jsonl):
        path = log_dir / "s.jsonl"
        write_jsonl(path, [log_entry(message_id="m1", request_id="r1")])
        aggregator = LogAggregator(candidate_dirs=[log_dir])
        before = await aggregator.aggregate()

        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(log_entry(
                message_id="m2", request_id="r2", input_tokens=7, output_tokens=3,
                cache_creation=2, cache_read=1,
            )) + "\n")
        after = await aggregator.aggregate()

        assert after.total_tokens - before.total_tokens == 13
        assert after.input_tokens - before.input_tokens == 7
        assert after.record_count == before.record_count + 1

    @pytest.mark.asyncio
    async def test_invalid_records_are_ignored(self, log_dir, log_entry, write_jsonl):
        write_jsonl(log_dir / "s.jsonl", [
            log_entry(message_id="m1"),
            log_entry(message_id="m2", model="<synthetic>"),
            log_entry(message_id="m3", isApiErrorMessage=True),
            {"type": "user", "message": {"content": "hi"}},
        ])

        usage = await LogAggregator(candidate_dirs=[log_dir]).aggregate()

        assert usage.record_count == 1

    @pytest.mark.asyncio
    async def test_numeric_ids_are_counted(self, log_dir, log_entry, write_jsonl):
        write_jsonl(log_dir / "s.jsonl", [
            log_entry(message_id="m1"),
            log_entry(message_id=12345, request_id=678),
        ])

        usage = await LogAggregator(candidate_dirs=[log_dir]).aggregate()

        assert usage.record_count == 2
        assert usage.total_tokens == 300

    @pytest.mark.asyncio
    async def test_non_finite_token_counts_are_skipped(self, log_dir, log_entry, write_jsonl):
        write_jsonl(
            log_dir / "s.jsonl",
            [log_entry(message_id="m1")],
            raw_lines=[
                '{"requestId": "r2", "message": {"id": "m2", "usage": '
                '{"input_tokens": Infinity, "output_tokens": 5}}}',
                '{"requestId": "r3", "message": {"id": "m3", "usage": '
                '{"input_tokens": 5, "output_tokens": 5, "cache_read_input_tokens": NaN}}}',
            ],
        )

        usage = await LogAggregator(candidate_dirs=[log_dir]).aggregate()

        assert usage.record_count == 2
        assert usage.total_tokens == 160
        assert usage.cache_read_tokens == 0

    @pytest.mark.asyncio
    async def test_missing_directory_gives_zeros(self, tmp_path):
        usage = await LogAggregator(candidate_dirs=[tmp_path / "nope"]).aggregate()

        assert usage.total_tokens == 0
        assert usage.record_count == 0
        assert usage.is_empty

    @pytest.mark.asyncio
    async def test_env_directory_is_used(self, monkeypatch, log_dir, log_entry, write_jsonl):
        write_jsonl(log_dir / "s.jsonl", [log_entry()])
        monkeypatch.setenv("CLAUDE_CONFIG_DIR", str(log_dir))

        usage = await LogAggregator().aggregate()

        assert usage.record_count == 1

    @pytest.mark.asyncio
    async def test_since_filter(self, log_dir, log_entry, write_jsonl):
        write_jsonl(log_dir / "s.jsonl", [
            log_entry(message_id="old", timestamp="2025-11-03T08:00:00Z"),
            log_entry(message_id="new", timestamp="2025-11-03T11:30:00Z"),
            log_entry(message_id="none", timestamp=None),
        ])
        aggregator = LogAggregator(candidate_dirs=[log_dir])
        now = datetime(2025, 11, 3, 12, 0, tzinfo=timezone.utc)

        recent = await aggregator.current_session_usage(now=now)
        everything = await aggregator.aggregate()

        assert recent.record_count == 1
        assert everything.record_count == 3
