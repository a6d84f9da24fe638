#!/usr/bin/env python3
"""
Tests for the AggregationEngine: statistics, grouping and ordering.
"""
import os
import sys
import shutil
import tempfile
from datetime import datetime, timedelta, timezone

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from crashlog.core.aggregation import AggregationEngine
from crashlog.core.dto import AppVersion, Event, EventPriority, ExceptionReport, LogKind
from crashlog.storage.file_store import FileLogStore


NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def report(uid, exception_type, version, minutes_ago):
    return ExceptionReport(
        uid=uid,
        exception_type=exception_type,
        hresult=0,
        message=f"{exception_type} {uid}",
        source=None,
        stack_trace=None,
        timestamp=NOW - timedelta(minutes=minutes_ago),
        app_version=AppVersion.parse(version),
        used_memory=0
    )


def event(uid, priority, version, minutes_ago):
    return Event(uid, priority, f"event {uid}", NOW - timedelta(minutes=minutes_ago), AppVersion.parse(version))


def open_engine(test_dir):
    store = FileLogStore(os.path.join(test_dir, "logs.db"))
    return store, AggregationEngine(store, clock=lambda: NOW)


def test_grouping_and_occurrences_scenario():
    """Test grouping and statistics of two types over two versions."""
    print("Test 1: Two Types, Two Versions")
    print("-" * 40)

    test_dir = tempfile.mkdtemp()
    try:
        store, engine = open_engine(test_dir)
        store.insert(LogKind.EXCEPTION, report("A", "Foo", "1.0.0.0", 30))
        store.insert(LogKind.EXCEPTION, report("A2", "Foo", "1.0.0.0", 20))
        store.insert(LogKind.EXCEPTION, report("B", "Bar", "1.1.0.0", 10))

        collection = engine.load_exceptions()
        assert collection.app_versions == (AppVersion(1, 1, 0, 0), AppVersion(1, 0, 0, 0))
        assert [i.uid for i in collection[0]] == ["B"]
        assert [i.uid for i in collection[1]] == ["A2", "A"]
        assert collection[1].count == 2
        print("✓ Groups ordered by version descending, logs newest first")

        by_uid = {i.uid: i for i in collection.logs}
        assert by_uid["A"].occurrences == 2
        assert by_uid["B"].occurrences == 1
        assert by_uid["A"].min_version == by_uid["A"].max_version == AppVersion(1, 0, 0, 0)
        assert by_uid["A"].most_recent_crash_time == NOW - timedelta(minutes=20)
        assert by_uid["A"].least_recent_crash_time == NOW - timedelta(minutes=30)
        assert by_uid["B"].most_recent_crash_time == by_uid["B"].least_recent_crash_time
        print("✓ Occurrences, version range and crash times")
    finally:
        shutil.rmtree(test_dir)
    print("✓ Test 1 passed!\n")


def test_version_range_across_groups():
    """Test that statistics span every version of a type."""
    print("Test 2: Version Range Across Groups")
    print("-" * 40)

    test_dir = tempfile.mkdtemp()
    try:
        store, engine = open_engine(test_dir)
        store.insert(LogKind.EXCEPTION, report("1", "Foo", "1.9", 50))
        store.insert(LogKind.EXCEPTION, report("2", "Foo", "1.10", 40))
        store.insert(LogKind.EXCEPTION, report("3", "Foo", "1.2", 30))

        infos = engine.load_exceptions().logs
        assert [str(v) for v in engine.load_exceptions().app_versions] == ["1.10.0.0", "1.9.0.0", "1.2.0.0"]
        for info in infos:
            assert info.occurrences == 3
            assert info.min_version == AppVersion(1, 2)
            assert info.max_version == AppVersion(1, 10)
        print("✓ Numeric version comparison in ranges and groups")
    finally:
        shutil.rmtree(test_dir)
    print("✓ Test 2 passed!\n")


def test_partition_and_occurrence_sum():
    """Test that groups partition the filtered set and occurrences add up."""
    print("Test 3: Partition Property")
    print("-" * 40)

    test_dir = tempfile.mkdtemp()
    try:
        store, engine = open_engine(test_dir)
        types = ["Foo", "Bar", "Baz"]
        versions = ["1.0", "1.1", "2.0"]
        for i in range(30):
            store.insert(LogKind.EXCEPTION, report(str(i), types[i % 3], versions[i % 2 + (i % 5 == 0)], i))

        collection = engine.load_exceptions()
        uids = [i.uid for g in collection for i in g]
        assert sorted(uids) == sorted(str(i) for i in range(30))
        assert len(uids) == len(set(uids))
        print("✓ Every record in exactly one group")

        for exception_type in types:
            members = [i for i in collection.logs if i.exception_type == exception_type]
            assert all(i.occurrences == len(members) for i in members)
        print("✓ Occurrences match the per-type member count")

        for group in collection:
            assert all(i.app_version == group.app_version for i in group)
            stamps = [i.timestamp for i in group]
            assert stamps == sorted(stamps, reverse=True)
        print("✓ Group members share the version and are newest first")
    finally:
        shutil.rmtree(test_dir)
    print("✓ Test 3 passed!\n")


def test_filtered_statistics():
    """Test that statistics are computed over the filtered set only."""
    print("Test 4: Filtered Statistics")
    print("-" * 40)

    test_dir = tempfile.mkdtemp()
    try:
        store, engine = open_engine(test_dir)
        store.insert(LogKind.EXCEPTION, report("old", "Foo", "1.0", 60 * 24 * 10))
        store.insert(LogKind.EXCEPTION, report("new1", "Foo", "2.0", 60))
        store.insert(LogKind.EXCEPTION, report("new2", "Foo", "2.0", 30))

        recent = engine.load_exceptions(threshold=timedelta(days=1))
        assert recent.logs_count == 2
        assert all(i.occurrences == 2 for i in recent.logs)
        assert all(i.min_version == AppVersion(2) for i in recent.logs)
        print("✓ Threshold filter applied before statistics")

        only_v1 = engine.load_exceptions(lambda r: r.app_version == AppVersion(1))
        assert [i.uid for i in only_v1.logs] == ["old"]
        assert only_v1.logs[0].occurrences == 1
        print("✓ Predicate filter applied before statistics")

        assert engine.load_exceptions(lambda r: False).count == 0
        print("✓ Empty filtered set gives an empty collection")
    finally:
        shutil.rmtree(test_dir)
    print("✓ Test 4 passed!\n")


def test_stats_recomputed_after_delete():
    """Test that derived fields follow the current store contents."""
    print("Test 5: Recomputed Statistics")
    print("-" * 40)

    test_dir = tempfile.mkdtemp()
    try:
        store, engine = open_engine(test_dir)
        first = store.insert(LogKind.EXCEPTION, report("1", "Foo", "1.0", 20))
        store.insert(LogKind.EXCEPTION, report("2", "Foo", "1.5", 10))
        assert engine.load_exceptions().logs[0].occurrences == 2

        store.delete_by_id(LogKind.EXCEPTION, first)
        info = engine.load_exceptions().logs[0]
        assert info.occurrences == 1
        assert info.min_version == info.max_version == AppVersion(1, 5)
        print("✓ No stale statistics after a deletion")
    finally:
        shutil.rmtree(test_dir)
    print("✓ Test 5 passed!\n")


def test_load_by_type_and_version():
    """Test the flat views by type and by version."""
    print("Test 6: Flat Views")
    print("-" * 40)

    test_dir = tempfile.mkdtemp()
    try:
        store, engine = open_engine(test_dir)
        store.insert(LogKind.EXCEPTION, report("1", "Foo", "1.0", 30))
        store.insert(LogKind.EXCEPTION, report("2", "Bar", "1.0", 20))
        store.insert(LogKind.EXCEPTION, report("3", "Foo", "2.0", 10))

        foo = engine.load_exceptions_by_type("Foo")
        assert [i.uid for i in foo] == ["3", "1"]
        assert all(i.occurrences == 2 for i in foo)
        assert foo[0].min_version == AppVersion(1) and foo[0].max_version == AppVersion(2)
        assert engine.load_exceptions_by_type("Missing") == ()
        print("✓ Type view is flat and newest first")

        v1 = engine.load_exceptions_for_version("1.0")
        assert [i.uid for i in v1] == ["2", "1"]
        assert [i.uid for i in engine.load_exceptions_for_version("1.0", "Bar")] == ["2"]
        print("✓ Version view")

        breakdown = engine.version_breakdown("Foo")
        assert [(str(b.app_version), b.count) for b in breakdown] == [("1.0.0.0", 1), ("2.0.0.0", 1)]
        print("✓ Per-version breakdown")
    finally:
        shutil.rmtree(test_dir)
    print("✓ Test 6 passed!\n")


def test_events_grouping():
    """Test that events are grouped like exceptions, without statistics."""
    print("Test 7: Events Grouping")
    print("-" * 40)

    test_dir = tempfile.mkdtemp()
    try:
        store, engine = open_engine(test_dir)
        store.insert(LogKind.EVENT, event("w", EventPriority.WARNING, "1.0", 2))
        store.insert(LogKind.EVENT, event("i", EventPriority.INFO, "1.0", 1))
        store.insert(LogKind.EVENT, event("d", EventPriority.DEBUG, "0.9", 0))

        collection = engine.load_events()
        assert collection.app_versions == (AppVersion(1), AppVersion(0, 9))
        assert [e.uid for e in collection[0]] == ["i", "w"]
        print("✓ Version groups, newest event first")

        warnings = engine.load_events(lambda e: e.priority <= EventPriority.WARNING)
        assert [e.uid for e in warnings.logs] == ["w"]
        assert [e.uid for e in engine.load_events_for_version("0.9")] == ["d"]
        assert engine.load_events_for_version("1.0", EventPriority.DEBUG) == ()
        recent = engine.load_events(threshold=timedelta(seconds=90))
        assert sorted(e.uid for e in recent.logs) == ["d", "i"]
        print("✓ Priority, version and threshold filters")
    finally:
        shutil.rmtree(test_dir)
    print("✓ Test 7 passed!\n")


def test_equal_timestamps_are_deterministic():
    """Test that ties are broken by insertion order."""
    print("Test 8: Timestamp Ties")
    print("-" * 40)

    test_dir = tempfile.mkdtemp()
    try:
        store, engine = open_engine(test_dir)
        for uid in ["a", "b", "c"]:
            store.insert(LogKind.EVENT, event(uid, EventPriority.INFO, "1.0", 5))

        first = [e.uid for e in engine.load_events().logs]
        second = [e.uid for e in engine.load_events().logs]
        assert first == second == ["c", "b", "a"]
        print("✓ Newest insert first on ties")
    finally:
        shutil.rmtree(test_dir)
    print("✓ Test 8 passed!\n")


def main():
    """Run all aggregation tests."""
    print("\n" + "=" * 40)
    print("Aggregation Test Suite")
    print("=" * 40 + "\n")

    try:
        test_grouping_and_occurrences_scenario()
        test_version_range_across_groups()
        test_partition_and_occurrence_sum()
        test_filtered_statistics()
        test_stats_recomputed_after_delete()
        test_load_by_type_and_version()
        test_events_grouping()
        test_equal_timestamps_are_deterministic()

        print("=" * 40)
        print("All aggregation tests passed! ✓")
        print("=" * 40)

    except AssertionError as e:
        print(f"\n✗ Test failed: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
