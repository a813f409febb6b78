"""
Tests for the origin data layer.

These tests verify:
- Month key normalization for every date shape the sheet produces
- Count parsing (thousands separators, blanks, negatives)
- Row filtering, month index extraction and per-month grouping
- Metadata sheet lookups
- The Google Sheets reader against a mocked Sheets API
"""

from datetime import date, datetime, timezone

import httpx
import pytest

from idolboard.sources import (
    FEMALE,
    MALE,
    GoogleSheetsSource,
    InMemoryOriginSource,
    SourceUnavailableError,
    metadata_sheet_for,
    normalize_month,
    opposite_gender,
    parse_count,
)
from idolboard.sources.google_sheets import serial_to_datetime
from idolboard.sources.normalize import is_month_key, memoized_month_normalizer
from idolboard.sources.tables import (
    extract_month_index,
    extract_month_records,
    filter_rows,
    find_metadata,
    group_records_by_month,
    metadata_for_gender,
)


# =============================================================================
# NORMALIZATION TESTS
# =============================================================================

class TestNormalizeMonth:
    """Test date cell normalization."""

    @pytest.mark.parametrize("value,expected", [
        ("2025-03", "2025-03"),
        ("2025.03", "2025-03"),
        ("2025/3", "2025-03"),
        ("2025/3/14", "2025-03"),
        ("2025-11-30T15:00:00.000Z", "2025-11"),
        (date(2024, 12, 31), "2024-12"),
        (datetime(2025, 1, 5, 10, 0), "2025-01"),
    ])
    def test_known_shapes(self, value, expected):
        assert normalize_month(value) == expected

    def test_aware_datetime_uses_sheet_timezone(self):
        """23:30 UTC on the last day of a month is already next month in KST."""
        value = datetime(2025, 1, 31, 23, 30, tzinfo=timezone.utc)
        assert normalize_month(value) == "2025-02"

    def test_empty_values(self):
        assert normalize_month(None) == ""
        assert normalize_month("") == ""

    def test_unparseable_text_falls_through(self):
        """Fallback output is not a month key and gets filtered by callers."""
        result = normalize_month("sometime soon")
        assert result == "sometim"
        assert not is_month_key(result)

    def test_memoized_normalizer_matches(self):
        normalize = memoized_month_normalizer()
        assert normalize("2025.03") == "2025-03"
        assert normalize("2025.03") == "2025-03"
        assert normalize(datetime(2025, 4, 1)) == "2025-04"


class TestParseCount:
    """Test count cell parsing."""

    @pytest.mark.parametrize("value,expected", [
        (1200, 1200),
        ("1,200", 1200),
        (" 3,000 ", 3000),
        (12.5, 12.5),
        ("", 0),
        (None, 0),
        ("n/a", 0),
        (-5, 0),
        (True, 0),
    ])
    def test_values(self, value, expected):
        assert parse_count(value) == expected

    def test_integral_float_becomes_int(self):
        result = parse_count(1500.0)
        assert result == 1500
        assert isinstance(result, int)


class TestGenders:
    """Test gender bucket helpers."""

    def test_opposite_gender(self):
        assert opposite_gender(MALE) == FEMALE
        assert opposite_gender(FEMALE) == MALE

    def test_metadata_sheet_for(self):
        assert metadata_sheet_for(FEMALE) == "girlgroup"
        assert metadata_sheet_for(MALE) == "boygroup"


# =============================================================================
# TABLE TESTS
# =============================================================================

class TestTables:
    """Test pure functions over sheet rows."""

    def test_filter_rows_exact_match(self, metric_rows):
        rows = filter_rows(metric_rows, MALE, "웨이보")
        assert len(rows) == 6
        assert all(row[2] == MALE and row[3] == "웨이보" for row in rows)

    def test_filter_rows_short_row(self):
        assert filter_rows([["only", "two"]], MALE, "웨이보") == []

    def test_month_index_sorted_and_distinct(self, metric_rows):
        months = extract_month_index(metric_rows, MALE, "웨이보")
        assert months == ["2025-01", "2025-02", "2025-03"]

    def test_month_index_year_filter(self, metric_rows):
        assert extract_month_index(metric_rows, MALE, "유튜브", year="2025") == ["2025-01"]
        assert extract_month_index(metric_rows, MALE, "유튜브", year="2024") == ["2024-12"]

    def test_month_index_skips_bad_dates(self):
        rows = [
            ["a", "g", MALE, "웨이보", "unknown", 1],
            ["b", "g", MALE, "웨이보", "2025-05", 1],
        ]
        assert extract_month_index(rows, MALE, "웨이보") == ["2025-05"]

    def test_month_index_unknown_pair(self, metric_rows):
        assert extract_month_index(metric_rows, FEMALE, "빌리빌리") == []

    def test_extract_month_records(self, metric_rows):
        records = extract_month_records(metric_rows, MALE, "웨이보", "2025-03")
        assert [(r.name, r.count) for r in records] == [
            ("뷔", 3000),
            ("강다니엘", 1000),
            ("지민", 3000),
        ]
        assert all(r.date == "2025-03" for r in records)

    def test_group_records_by_month(self, metric_rows):
        filtered = filter_rows(metric_rows, MALE, "웨이보")
        buckets = group_records_by_month(filtered, ["2025-01", "2025-02"])

        assert list(buckets.keys()) == ["2025-01", "2025-02"]
        assert [r.count for r in buckets["2025-01"]] == [1200]
        assert [r.name for r in buckets["2025-02"]] == ["강다니엘", "뷔"]

    def test_metadata_for_gender(self, metadata_sheets):
        records = metadata_for_gender(metadata_sheets["boygroup"], MALE)
        assert len(records) == 2
        assert records[0].to_payload()["agency"] == "KONNECT"

    def test_metadata_header_only(self):
        assert metadata_for_gender([["name", "group", "gender"]], MALE) == []

    def test_find_metadata_trims(self, metadata_sheets):
        record = find_metadata(metadata_sheets["boygroup"], "뷔", MALE)
        assert record is not None
        assert record.group == "BTS"

    def test_find_metadata_gender_must_match(self, metadata_sheets):
        assert find_metadata(metadata_sheets["boygroup"], "뷔", FEMALE) is None

    def test_metadata_empty_cells_are_blank(self):
        rows = [["name", "group", "gender", "debut"], ["하니", "", "여자", None]]
        record = find_metadata(rows, "하니", FEMALE)
        assert record.to_payload()["debut"] == ""


# =============================================================================
# SOURCE TESTS
# =============================================================================

@pytest.mark.asyncio
class TestInMemorySource:
    """Test the list-backed origin."""

    async def test_counts_reads(self, source):
        await source.read_metric_rows()
        await source.read_metric_rows()
        assert source.reads == 2

    async def test_missing_metric_sheet(self):
        source = InMemoryOriginSource(metric_rows=None)
        with pytest.raises(SourceUnavailableError):
            await source.read_metric_rows()

    async def test_missing_metadata_sheet(self):
        source = InMemoryOriginSource(metric_rows=[])
        with pytest.raises(SourceUnavailableError) as exc:
            await source.read_metadata_rows(FEMALE)
        assert exc.value.sheet == "girlgroup"


class TestSerialDates:
    """Test spreadsheet serial number conversion."""

    def test_serial_to_datetime(self):
        assert serial_to_datetime(45658) == datetime(2025, 1, 1)
        assert normalize_month(serial_to_datetime(45688.5)) == "2025-01"

    def test_non_numbers_pass_through(self):
        assert serial_to_datetime("2025-01") == "2025-01"
        assert serial_to_datetime(True) is True


@pytest.mark.asyncio
class TestGoogleSheetsSource:
    """Test the Sheets v4 reader against a mocked API."""

    def _source(self, handler) -> GoogleSheetsSource:
        client = httpx.AsyncClient(
            base_url=GoogleSheetsSource.BASE_URL,
            transport=httpx.MockTransport(handler),
        )
        return GoogleSheetsSource(
            api_key="test-key",
            metrics_spreadsheet_id="metrics-id",
            metadata_spreadsheet_ids={"girlgroup": "girls-id", "boygroup": "boys-id"},
            client=client,
        )

    async def test_metric_rows_drop_header_and_convert_dates(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"values": [
                ["name", "group", "gender", "sns", "date", "count"],
                ["뷔", "BTS", "남자", "웨이보", 45658, 3000],
                ["지민", "BTS", "남자"],
            ]})

        source = self._source(handler)
        rows = await source.read_metric_rows()

        assert seen["path"].endswith("/metrics-id/values/sns_data")
        assert seen["params"]["dateTimeRenderOption"] == "SERIAL_NUMBER"
        assert seen["params"]["key"] == "test-key"
        assert rows[0][4] == datetime(2025, 1, 1)
        assert rows[1] == ["지민", "BTS", "남자", "", "", ""]
        assert source.reads == 1

    async def test_metadata_uses_gender_spreadsheet(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            return httpx.Response(200, json={"values": [["name"], ["장원영"]]})

        source = self._source(handler)
        rows = await source.read_metadata_rows(FEMALE)

        assert seen["path"].endswith("/girls-id/values/idol_metadata")
        assert rows == [["name"], ["장원영"]]

    async def test_missing_sheet(self):
        source = self._source(lambda request: httpx.Response(400, json={}))
        with pytest.raises(SourceUnavailableError):
            await source.read_metric_rows()

    async def test_server_error(self):
        source = self._source(lambda request: httpx.Response(503))
        with pytest.raises(SourceUnavailableError) as exc:
            await source.read_metric_rows()
        assert "503" in str(exc.value)
