import logging
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from partcomposer.metrics import EngineStats, active_stats, collect_stats, count, stage


def test_nothing_is_recorded_without_a_collector() -> None:
    assert active_stats() is None
    count("x", 3)
    with stage("y"):
        pass
    assert active_stats() is None


def test_collector_accumulates_counts_and_timings() -> None:
    with collect_stats() as stats:
        assert active_stats() is stats
        count("hits")
        count("hits", 2)
        with stage("work"):
            pass
        with stage("work"):
            pass
    assert active_stats() is None
    assert stats.counters == {"hits": 3.0}
    assert stats.timings["work"] >= 0.0


def test_nested_collectors_restore_outer() -> None:
    outer = EngineStats()
    with collect_stats(outer):
        with collect_stats() as inner:
            count("a")
        count("b")
    assert inner.counters == {"a": 1.0}
    assert outer.counters == {"b": 1.0}


def test_stage_logs_duration(caplog) -> None:
    logger = logging.getLogger("stage.test")
    with caplog.at_level(logging.DEBUG, logger="stage.test"):
        with stage("busy", logger):
            pass
    assert any("busy took" in rec.getMessage() for rec in caplog.records)


def test_rows_format_timings_then_counters() -> None:
    stats = EngineStats()
    stats.add_time("b", 0.002)
    stats.add_time("a", -1.0)
    stats.increment("n", 4)
    assert stats.rows() == [("b", "2.0 ms"), ("n", "4")]
