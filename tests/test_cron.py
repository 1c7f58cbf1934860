from __future__ import annotations

from datetime import datetime

import pytest

from zemdocs.utils.cron import CronSchedule


class TestParse:
    def test_five_fields_prepend_seconds(self):
        sched = CronSchedule.parse("0 */6 * * *")
        assert sched.seconds == frozenset({0})
        assert sched.hours == frozenset({0, 6, 12, 18})

    def test_six_fields(self):
        sched = CronSchedule.parse("*/15 * * * * *")
        assert sched.seconds == frozenset({0, 15, 30, 45})

    def test_lists_ranges_steps(self):
        sched = CronSchedule.parse("0,30 8-18/2 1,15 * 1-5")
        assert sched.minutes == frozenset({0, 30})
        assert sched.hours == frozenset({8, 10, 12, 14, 16, 18})
        assert sched.days == frozenset({1, 15})
        assert sched.weekdays == frozenset({1, 2, 3, 4, 5})

    def test_sunday_as_seven(self):
        assert CronSchedule.parse("0 0 * * 7").weekdays == frozenset({0})

    def test_start_with_step(self):
        assert CronSchedule.parse("5/20 * * * *").minutes == frozenset({5, 25, 45})

    @pytest.mark.parametrize(
        "expr",
        ["", "* * * *", "* * * * * * *", "60 * * * *", "* 24 * * *", "* * 0 * *", "*/0 * * * *", "a * * * *"],
    )
    def test_invalid(self, expr):
        with pytest.raises(ValueError):
            CronSchedule.parse(expr)


class TestNextAfter:
    def test_every_six_hours(self):
        sched = CronSchedule.parse("0 */6 * * *")
        assert sched.next_after(datetime(2024, 8, 15, 10, 30)) == datetime(2024, 8, 15, 12, 0)

    def test_strictly_after(self):
        sched = CronSchedule.parse("0 */6 * * *")
        assert sched.next_after(datetime(2024, 8, 15, 12, 0)) == datetime(2024, 8, 15, 18, 0)

    def test_rolls_over_year(self):
        sched = CronSchedule.parse("0 0 1 1 *")
        assert sched.next_after(datetime(2024, 8, 15)) == datetime(2025, 1, 1)

    def test_seconds_field(self):
        sched = CronSchedule.parse("*/10 * * * * *")
        assert sched.next_after(datetime(2024, 8, 15, 10, 0, 3)) == datetime(2024, 8, 15, 10, 0, 10)

    def test_weekday(self):
        # 2024-08-15 is a Thursday
        sched = CronSchedule.parse("0 9 * * 1")
        assert sched.next_after(datetime(2024, 8, 15)) == datetime(2024, 8, 19, 9, 0)

    def test_day_of_month_or_weekday(self):
        sched = CronSchedule.parse("0 0 20 * 5")
        # Friday 16th comes before the 20th
        assert sched.next_after(datetime(2024, 8, 15, 1)) == datetime(2024, 8, 16)

    def test_impossible_date(self):
        with pytest.raises(ValueError):
            CronSchedule.parse("0 0 31 2 *").next_after(datetime(2024, 1, 1))
