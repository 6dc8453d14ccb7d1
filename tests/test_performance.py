from cdsstream.performance import Metrics, PerformanceMonitor


def test_single_metric_aggregates():
    monitor = PerformanceMonitor()
    values = [40, 10, 25]
    for value in values:
        monitor.record_metric("decode", value)

    metric = monitor.get_metrics("decode")
    assert metric.count == len(values)
    assert metric.total_time == sum(values)
    assert metric.min_time == min(values)
    assert metric.max_time == max(values)
    assert metric.avg_time == metric.total_time / metric.count


def test_unknown_metric_is_empty():
    monitor = PerformanceMonitor()
    assert monitor.get_metrics("missing") == Metrics()


def test_metrics_are_kept_separately():
    monitor = PerformanceMonitor()
    monitor.record_metric("a", 5)
    monitor.record_metric("b", 7)
    monitor.record_metric("b", 9)

    everything = monitor.get_all_metrics()
    assert sorted(everything) == ["a", "b"]
    assert everything["a"].count == 1
    assert everything["b"].count == 2
    assert everything["b"].min_time == 7


def test_snapshots_do_not_alias_internal_state():
    monitor = PerformanceMonitor()
    monitor.record_metric("x", 3)
    snapshot = monitor.get_metrics("x")
    snapshot.count = 999
    monitor.get_all_metrics()["x"].count = 999
    assert monitor.get_metrics("x").count == 1


def test_reset_clears_everything():
    monitor = PerformanceMonitor()
    monitor.record_metric("x", 3)
    monitor.reset()
    assert monitor.get_all_metrics() == {}
    assert monitor.get_metrics("x") == Metrics()