"""
Tests for verification sinks.
"""

from datetime import datetime, timedelta, timezone

import pytest

from eigenai.models import Usage, VerificationRecord
from eigenai.sinks import InMemoryVerificationSink, JsonlVerificationSink, adeliver, deliver


def _record(status="verified", minutes=0, **kwargs):
    fields = dict(
        request_prompt="p",
        response_model="m",
        response_output="o",
        signature="0xsig",
        usage=Usage(),
        chain_id="1",
        expected_signer="0xsigner",
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes),
    )
    if status == "verified":
        fields.update(recovered_signer="0xsigner", is_valid=True)
    elif status == "invalid":
        fields.update(recovered_signer="0xother", is_valid=False)
    elif status == "error":
        fields.update(recovered_signer="ERROR", error="bad signature")
    fields.update(kwargs)
    return VerificationRecord(**fields)


@pytest.fixture(params=["memory", "jsonl"])
def sink(request, tmp_path):
    if request.param == "memory":
        return InMemoryVerificationSink()
    return JsonlVerificationSink(tmp_path / "logs" / "verifications.jsonl")


class TestSinks:
    def test_list_unsubmitted_oldest_first_verified_only(self, sink):
        newer = _record(minutes=5)
        older = _record(minutes=1)
        sink.record(newer)
        sink.record(older)
        sink.record(_record(status="invalid"))
        sink.record(_record(status="error"))

        assert [r.id for r in sink.list_unsubmitted()] == [older.id, newer.id]
        assert [r.id for r in sink.list_unsubmitted(limit=1)] == [older.id]

    def test_mark_submitted(self, sink):
        first, second = _record(minutes=1), _record(minutes=2)
        sink.record(first)
        sink.record(second)
        sink.mark_submitted([first.id])

        assert [r.id for r in sink.list_unsubmitted()] == [second.id]
        assert sink.stats() == {
            "total": 2, "verified": 2, "invalid": 0, "error": 0, "pending": 0, "submitted": 1,
        }

    def test_stats_by_status(self, sink):
        for status in ("verified", "invalid", "error", "pending"):
            sink.record(_record(status=status))
        stats = sink.stats()
        assert stats["total"] == 4
        assert stats["verified"] == stats["invalid"] == stats["error"] == stats["pending"] == 1


class TestJsonlSink:
    def test_round_trips_records(self, tmp_path):
        path = tmp_path / "v.jsonl"
        record = _record()
        JsonlVerificationSink(path).record(record)
        [loaded] = JsonlVerificationSink(path).all()
        assert loaded.model_dump() == record.model_dump()

    def test_skips_unreadable_lines(self, tmp_path):
        path = tmp_path / "v.jsonl"
        sink = JsonlVerificationSink(path)
        sink.record(_record())
        with open(path, "a") as f:
            f.write("{truncated\n\n")
        assert len(sink.all()) == 1

    @pytest.mark.parametrize("line", ["[]", '{"x": 1}', '"text"', '{"submitted": [1]}', "null"])
    def test_skips_lines_that_are_not_records(self, tmp_path, line):
        path = tmp_path / "v.jsonl"
        sink = JsonlVerificationSink(path)
        record = _record()
        sink.record(record)
        with open(path, "a") as f:
            f.write(line + "\n")
        assert [r.id for r in sink.all()] == [record.id]
        assert [r.id for r in sink.list_unsubmitted()] == [record.id]
        assert sink.stats()["total"] == 1


class TestDeliver:
    def test_no_sink(self):
        assert deliver(None, _record()) is False

    def test_failing_sink_is_swallowed(self):
        class Broken:
            def record(self, record):
                raise OSError("disk full")

            def list_unsubmitted(self, limit=10):
                return []

        assert deliver(Broken(), _record()) is False

    def test_delivers(self):
        sink = InMemoryVerificationSink()
        assert deliver(sink, _record()) is True
        assert len(sink.all()) == 1

    @pytest.mark.asyncio
    async def test_async_delivery(self, tmp_path):
        sink = JsonlVerificationSink(tmp_path / "v.jsonl")
        assert await adeliver(sink, _record()) is True
        assert await adeliver(None, _record()) is False
        assert len(sink.all()) == 1
