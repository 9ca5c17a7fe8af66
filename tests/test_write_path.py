"""
Unit tests: schema-resilient remote write path.

Verifies:
- an unknown optional column is dropped and the write retried exactly once
- only the named column group is dropped (word match, not substring)
- unrelated failures propagate untouched and are never retried
"""

import pytest

from tasca.errors import BackendError, ConnectionError, SchemaDriftError
from tasca.write_path import drop_named_columns, is_unknown_column_error, write_with_schema_fallback

pytestmark = pytest.mark.asyncio

PAYLOAD = {
    "user_id": "u1",
    "name": "Hotel Mare",
    "lat": 44.0,
    "lng": 12.0,
    "average_cost": 90,
    "services": ["WiFi"],
    "bip_convention": True,
    "liked_by": [],
}


def drift(column, code="PGRST204"):
    return BackendError(
        f"Could not find the '{column}' column of 'business_cards' in the schema cache",
        status_code=400,
        details={"code": code},
    )


class Recorder:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.payloads = []

    async def __call__(self, payload):
        self.payloads.append(payload)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class TestDropNamedColumns:
    async def test_lat_drops_both_coordinates(self):
        reduced, dropped = drop_named_columns(PAYLOAD, "column lat does not exist")
        assert dropped == ["lat", "lng"]
        assert "lat" not in reduced and "lng" not in reduced
        assert reduced["average_cost"] == 90

    async def test_word_match_only(self):
        _, dropped = drop_named_columns(PAYLOAD, "column latitude does not exist")
        assert dropped == []

    async def test_classification(self):
        assert is_unknown_column_error(drift("services"))
        assert is_unknown_column_error(BackendError("column x does not exist", details={"code": "42703"}))
        assert not is_unknown_column_error(BackendError("duplicate key", details={"code": "23505"}))
        assert not is_unknown_column_error(ConnectionError("column of doom", status_code=503))


class TestWriteWithSchemaFallback:
    async def test_retries_once_without_missing_column(self):
        write = Recorder(drift("bip_convention"), [{"id": "r1"}])
        result = await write_with_schema_fallback(write, PAYLOAD)

        assert result == [{"id": "r1"}]
        assert len(write.payloads) == 2
        retried = write.payloads[1]
        assert "bip_convention" not in retried
        assert {k: v for k, v in PAYLOAD.items() if k != "bip_convention"} == retried

    async def test_unrelated_error_not_retried(self):
        write = Recorder(BackendError("permission denied for table", status_code=403))
        with pytest.raises(BackendError) as info:
            await write_with_schema_fallback(write, PAYLOAD)
        assert not isinstance(info.value, SchemaDriftError)
        assert len(write.payloads) == 1

    async def test_second_drift_surfaces_dropped_columns(self):
        write = Recorder(drift("services"), drift("liked_by"))
        with pytest.raises(SchemaDriftError) as info:
            await write_with_schema_fallback(write, PAYLOAD)
        assert info.value.dropped_columns == ["services"]
        assert "liked_by" in info.value.message
        assert len(write.payloads) == 2

    async def test_unknown_required_column_fails_without_retry(self):
        write = Recorder(drift("phone"))
        with pytest.raises(SchemaDriftError):
            await write_with_schema_fallback(write, PAYLOAD)
        assert len(write.payloads) == 1

    async def test_non_drift_failure_on_retry_propagates(self):
        write = Recorder(drift("average_cost"), BackendError("row violates policy", status_code=403))
        with pytest.raises(BackendError) as info:
            await write_with_schema_fallback(write, PAYLOAD)
        assert info.value.status_code == 403
        assert not isinstance(info.value, SchemaDriftError)

    async def test_connection_errors_not_retried(self):
        write = Recorder(ConnectionError("Request timeout", status_code=408))
        with pytest.raises(ConnectionError):
            await write_with_schema_fallback(write, PAYLOAD)
        assert len(write.payloads) == 1


class TestConstraintErrorsPassThrough:
    async def test_not_null_violation_is_not_drift(self):
        original = BackendError(
            'null value in column "name" of relation "business_cards" violates not-null constraint',
            status_code=400,
            details={"code": "23502"},
        )
        write = Recorder(original)
        with pytest.raises(BackendError) as info:
            await write_with_schema_fallback(write, PAYLOAD)
        assert info.value is original
        assert len(write.payloads) == 1

    async def test_uncoded_column_message_without_optional_name(self):
        original = BackendError("column reference is ambiguous", status_code=400)
        write = Recorder(original)
        with pytest.raises(BackendError) as info:
            await write_with_schema_fallback(write, PAYLOAD)
        assert info.value is original
