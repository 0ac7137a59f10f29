from datetime import datetime

from hwpos.time_utils import add_months_no_overflow, to_utc_z, utcnow


class TestAddMonths:
    def test_plain(self):
        assert add_months_no_overflow(datetime(2026, 3, 15, 10, 30), 12) == datetime(2027, 3, 15, 10, 30)

    def test_clamps_to_month_end(self):
        assert add_months_no_overflow(datetime(2026, 1, 31), 1) == datetime(2026, 2, 28)
        assert add_months_no_overflow(datetime(2027, 1, 31), 13) == datetime(2028, 2, 29)
        assert add_months_no_overflow(datetime(2026, 8, 31), 1) == datetime(2026, 9, 30)

    def test_crosses_year(self):
        assert add_months_no_overflow(datetime(2026, 11, 30), 3) == datetime(2027, 2, 28)

    def test_zero_months(self):
        assert add_months_no_overflow(datetime(2026, 5, 5), 0) == datetime(2026, 5, 5)


class TestIsoHelpers:
    def test_utcnow_is_naive(self):
        assert utcnow().tzinfo is None

    def test_to_utc_z(self):
        assert to_utc_z(None) is None
        assert to_utc_z(datetime(2026, 4, 1, 12, 0, 5, 999)) == "2026-04-01T12:00:05Z"
