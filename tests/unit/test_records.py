"""Tests for personal-record table ordering and retention."""
from datetime import datetime

from stravadash.analysis.records import (
    FASTEST,
    LONGEST,
    insert_best_efforts,
    insert_record,
    insert_ride_records,
)
from stravadash.models.activity import RecordEntry


def _entry(activity_id, time=300, distance=1000.0, speed=None):
    return RecordEntry(time=time, distance=distance, speed=speed, activity_id=activity_id)


class TestRunBuckets:
    def test_sorted_ascending_by_time_after_every_insert(self):
        table = {}
        for activity_id, time in [(1, 300), (2, 280), (3, 310), (4, 290)]:
            insert_record(table, "Run", "1k", _entry(activity_id, time))
            times = [e.time for e in table["Run"]["1k"]]
            assert times == sorted(times)
        assert [e.activity_id for e in table["Run"]["1k"]] == [2, 4, 1, 3]

    def test_same_activity_not_inserted_twice(self):
        table = {}
        assert insert_record(table, "Run", "1k", _entry(1, 300)) is True
        assert insert_record(table, "Run", "1k", _entry(1, 300)) is False
        assert len(table["Run"]["1k"]) == 1

    def test_equal_times_from_different_activities_kept(self):
        table = {}
        insert_record(table, "Run", "1k", _entry(1, 300))
        insert_record(table, "Run", "1k", _entry(2, 300))
        assert len(table["Run"]["1k"]) == 2

    def test_max_entries_keeps_best(self):
        table = {}
        for activity_id, time in enumerate([300, 280, 310, 290], start=1):
            insert_record(table, "Run", "1k", _entry(activity_id, time), max_entries=2)
        assert [e.time for e in table["Run"]["1k"]] == [280, 290]

    def test_entry_outside_cap_reports_not_kept(self):
        table = {}
        insert_record(table, "Run", "1k", _entry(1, 200), max_entries=1)
        assert insert_record(table, "Run", "1k", _entry(2, 400), max_entries=1) is False


class TestBestEfforts:
    def test_buckets_by_effort_name(self):
        table = {}
        efforts = [
            {"name": "1k", "elapsed_time": 290, "distance": 1000.0},
            {"name": "5k", "elapsed_time": 1500, "distance": 5000.0},
            {"name": None, "elapsed_time": 10},
        ]
        kept = insert_best_efforts(table, "Run", efforts, 1001, datetime(2026, 10, 12, 8, 30))
        assert kept == 2
        assert set(table["Run"]) == {"1k", "5k"}
        assert table["Run"]["5k"][0].date == datetime(2026, 10, 12, 8, 30)


class TestRideRecords:
    def test_longest_and_fastest_descending(self, make_activity):
        table = {}
        rides = [
            make_activity(1, type="Ride", distance=30000.0, moving_time=3600, average_speed=8.3),
            make_activity(2, type="Ride", distance=80000.0, moving_time=12000, average_speed=6.7),
            make_activity(3, type="VirtualRide", distance=20000.0, moving_time=2000, average_speed=10.0),
        ]
        for ride in rides:
            insert_ride_records(table, ride)

        assert [e.activity_id for e in table["Ride"][LONGEST]] == [2, 1, 3]
        assert [e.activity_id for e in table["Ride"][FASTEST]] == [3, 1, 2]

    def test_speed_derived_when_missing(self, make_activity):
        table = {}
        insert_ride_records(table, make_activity(1, type="Ride", distance=36000.0, moving_time=3600))
        assert table["Ride"][FASTEST][0].speed == 10.0

    def test_zero_distance_ignored(self, make_activity):
        table = {}
        assert insert_ride_records(table, make_activity(1, type="Ride", distance=0.0)) == 0
        assert table == {}
