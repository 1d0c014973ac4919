"""Unit tests for result extraction

Tests the GetMetricData pager including:
- Evaluation window
- Pagination
- Label decoding and routing to service/host values
- Default values for series without datapoints
- Keeping partial results on errors
"""
import pytest

from conftest import NOW, FakeRetrieval, page, row
from forwarder.buffer import MetricBuffer
from forwarder.errors import LabelError, RetrievalError
from forwarder.extractor import MetricDataExtractor, evaluation_window, fetch_metric_values
from forwarder.models import HostMetricValue, ServiceMetricValue, Window
from forwarder.query import CompiledQuery


def query(label, id="m1"):
    return CompiledQuery(id=id, label=label, namespace="N", metric_name="M", stat="Sum")


class TestEvaluationWindow:
    """Test window computation"""

    def test_window_on_minute_boundary(self):
        window = evaluation_window(NOW)
        assert window == Window(start=NOW - 180, end=NOW - 120)

    def test_window_truncates_to_minute(self):
        assert evaluation_window(NOW + 59.9) == evaluation_window(NOW)

    def test_custom_delay(self):
        assert evaluation_window(NOW, delay=0) == Window(start=NOW - 60, end=NOW)

    def test_window_datetimes(self):
        window = evaluation_window(NOW)
        assert window.start_time.timestamp() == window.start
        assert window.end_time.timestamp() == window.end


class TestMetricDataExtractor:
    """Test page extraction without retrieval"""

    def test_routes_service_and_host_rows(self):
        extractor = MetricDataExtractor(evaluation_window(NOW))
        added = extractor.add_page(page(
            row("service=blog:alb.requests", [(NOW - 180, 10.0)]),
            row("host=h1:cpu", [(NOW - 180, 55.5), (NOW - 240, 50.0)]),
        ))

        assert added == 3
        assert extractor.values.service_values("blog") == [
            ServiceMetricValue(service="blog", name="alb.requests", time=NOW - 180, value=10.0),
        ]
        assert sorted(extractor.values.host_values(), key=lambda v: v.time) == [
            HostMetricValue(host_id="h1", name="cpu", time=NOW - 240, value=50.0),
            HostMetricValue(host_id="h1", name="cpu", time=NOW - 180, value=55.5),
        ]

    def test_duplicate_points_overwrite(self):
        extractor = MetricDataExtractor(evaluation_window(NOW))
        extractor.add_page(page(row("service=blog:n", [(NOW, 1.0)])))
        extractor.add_page(page(row("service=blog:n", [(NOW, 2.0)])))

        assert [v.value for v in extractor.values] == [2.0]

    def test_non_finite_values_are_skipped(self):
        extractor = MetricDataExtractor(evaluation_window(NOW))
        added = extractor.add_page(page(
            row("service=blog:n", [(NOW - 240, float("nan")), (NOW - 180, 3.0), (NOW - 120, float("inf"))]),
        ))

        assert added == 1
        assert [v.value for v in extractor.values] == [3.0]

    def test_bad_label_raises(self):
        extractor = MetricDataExtractor(evaluation_window(NOW))
        with pytest.raises(LabelError):
            extractor.add_page(page(row("garbage", [(NOW, 1.0)])))

    def test_bad_label_raises_even_without_points(self):
        extractor = MetricDataExtractor(evaluation_window(NOW))
        with pytest.raises(LabelError):
            extractor.add_page(page(row("garbage", [])))

    def test_default_applied_for_unseen_label(self):
        window = evaluation_window(NOW)
        extractor = MetricDataExtractor(window, defaults={"service=blog:errors": 0.0})
        extractor.add_page(page(row("service=blog:errors", [])))

        assert extractor.apply_defaults() == 1
        assert list(extractor.values) == [
            ServiceMetricValue(service="blog", name="errors", time=window.start, value=0.0),
        ]

    def test_default_not_applied_for_seen_label(self):
        extractor = MetricDataExtractor(evaluation_window(NOW), defaults={"host=h1:cpu": 0.0})
        extractor.add_page(page(row("host=h1:cpu", [(NOW - 180, 12.0)])))

        assert extractor.apply_defaults() == 0
        assert [v.value for v in extractor.values] == [12.0]


class TestFetchMetricValues:
    """Test pagination against a fake retrieval"""

    @pytest.mark.asyncio
    async def test_follows_next_token(self):
        retrieval = FakeRetrieval([
            page(row("service=blog:a", [(NOW - 180, 1.0)]), next_token="t1"),
            page(row("service=blog:b", [(NOW - 180, 2.0)]), next_token="t2"),
            page(row("host=h:c", [(NOW - 180, 3.0)])),
        ])
        window = evaluation_window(NOW)
        queries = [query("service=blog:a", "m1"), query("service=blog:b", "m2"), query("host=h:c", "m3")]

        values = await fetch_metric_values(retrieval, window, queries)

        assert [c["next_token"] for c in retrieval.calls] == [None, "t1", "t2"]
        assert all(c["window"] == window for c in retrieval.calls)
        assert len(values) == 3

    @pytest.mark.asyncio
    async def test_no_queries_no_calls(self):
        retrieval = FakeRetrieval()
        values = await fetch_metric_values(retrieval, evaluation_window(NOW), [])
        assert retrieval.calls == []
        assert len(values) == 0

    @pytest.mark.asyncio
    async def test_default_for_series_without_datapoints(self):
        """A spec with default 0 and no datapoints yields one value at the window start"""
        retrieval = FakeRetrieval([page(row("service=blog:errors", []))])
        window = evaluation_window(NOW)

        values = await fetch_metric_values(
            retrieval, window, [query("service=blog:errors")], defaults={"service=blog:errors": 0.0},
        )

        assert list(values) == [ServiceMetricValue(service="blog", name="errors", time=window.start, value=0.0)]

    @pytest.mark.asyncio
    async def test_default_seen_on_a_later_page(self):
        retrieval = FakeRetrieval([
            page(row("service=blog:errors", []), next_token="t1"),
            page(row("service=blog:errors", [(NOW - 180, 4.0)])),
        ])

        values = await fetch_metric_values(
            retrieval, evaluation_window(NOW), [query("service=blog:errors")],
            defaults={"service=blog:errors": 0.0},
        )

        assert [v.value for v in values] == [4.0]

    @pytest.mark.asyncio
    async def test_error_keeps_partial_results(self):
        retrieval = FakeRetrieval(
            [page(row("service=blog:a", [(NOW - 180, 1.0)]), next_token="t1")],
            error=RetrievalError("throttled"), error_on_page=1,
        )
        into = MetricBuffer()

        with pytest.raises(RetrievalError):
            await fetch_metric_values(
                retrieval, evaluation_window(NOW), [query("service=blog:a")],
                defaults={"service=blog:zero": 0.0}, into=into,
            )

        # page 1 is kept, defaults are not applied to an incomplete fetch
        assert [v.name for v in into] == ["a"]

    @pytest.mark.asyncio
    async def test_label_error_aborts_fetch(self):
        retrieval = FakeRetrieval([
            page(row("nonsense", [(NOW - 180, 1.0)]), next_token="t1"),
            page(row("service=blog:a", [(NOW - 180, 1.0)])),
        ])

        with pytest.raises(LabelError):
            await fetch_metric_values(retrieval, evaluation_window(NOW), [query("service=blog:a")])
        assert len(retrieval.calls) == 1
