"""Tests for fetch resilience: provider error handling, per-call delay,
windowed batching and per-item failure isolation.
"""

import threading
import time
from unittest.mock import MagicMock, patch

import pytest
import requests

from batching import FetchOutcome, isolated, run_batches
from schemas import ProviderConfig
from tushare_client import ProviderClient, ProviderError, TabularResult


def _response(payload):
    resp = MagicMock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    return resp


# =====================================================================
# TABULAR RESULT
# =====================================================================

class TestTabularResult:
    def test_column_lookup_by_name(self):
        t = TabularResult(["a", "b"], [[1, 2], [3, 4]])
        assert t.column("b") == [2, 4]
        assert t.value(1, "a") == 3
        assert t.first("b") == 2

    def test_missing_column_is_absent(self):
        t = TabularResult(["a"], [[1]])
        assert t.first("zzz") is None
        assert t.column("zzz") == []
        assert not t.has("zzz")

    def test_ragged_row_rejected(self):
        with pytest.raises(ProviderError):
            TabularResult(["a", "b"], [[1, 2], [3]])

    def test_duplicate_fields_rejected(self):
        with pytest.raises(ProviderError):
            TabularResult(["a", "a"], [])

    def test_latest_by(self):
        t = TabularResult(["end_date", "v"],
                          [["20230630", 1], ["20231231", 2], ["20230331", 3]])
        latest = t.latest_by("end_date")
        assert len(latest) == 1
        assert latest.first("v") == 2

    def test_null_payload_is_empty(self):
        t = TabularResult.from_payload(None)
        assert len(t) == 0
        assert not t

    def test_to_frame(self):
        df = TabularResult(["x", "y"], [[1, 2]]).to_frame()
        assert list(df.columns) == ["x", "y"]
        assert df.iloc[0]["y"] == 2


# =====================================================================
# PROVIDER CLIENT
# =====================================================================

class TestProviderClient:
    @patch("tushare_client.time.sleep")
    @patch("tushare_client.requests.post")
    def test_success_returns_table(self, mock_post, mock_sleep):
        mock_post.return_value = _response({
            "code": 0, "msg": "",
            "data": {"fields": ["ts_code", "close"], "items": [["600519.SH", 1700.0]]},
        })
        client = ProviderClient(ProviderConfig(token="tok", call_delay=0.1))
        result = client.call("daily", {"ts_code": "600519.SH"})

        assert result.first("close") == 1700.0
        body = mock_post.call_args.kwargs["json"]
        assert body["api_name"] == "daily"
        assert body["token"] == "tok"
        assert body["params"] == {"ts_code": "600519.SH"}
        mock_sleep.assert_called_once_with(0.1)

    @patch("tushare_client.time.sleep")
    @patch("tushare_client.requests.post")
    def test_nonzero_code_raises_with_message(self, mock_post, mock_sleep):
        mock_post.return_value = _response({"code": 40203, "msg": "抱歉，您没有访问该接口的权限"})
        client = ProviderClient(ProviderConfig(token="tok"))
        with pytest.raises(ProviderError) as exc:
            client.call("fund_portfolio", {"ts_code": "512890.SH"})
        assert exc.value.api_name == "fund_portfolio"
        assert "没有访问该接口的权限" in exc.value.message
        # No retries
        assert mock_post.call_count == 1

    @patch("tushare_client.time.sleep")
    @patch("tushare_client.requests.post")
    def test_transport_failure_raises_provider_error(self, mock_post, mock_sleep):
        mock_post.side_effect = requests.ConnectionError("connection refused")
        client = ProviderClient(ProviderConfig())
        with pytest.raises(ProviderError, match="connection refused"):
            client.call("daily", {})
        assert mock_post.call_count == 1

    @patch("tushare_client.time.sleep")
    @patch("tushare_client.requests.post")
    def test_null_data_is_empty_table(self, mock_post, mock_sleep):
        mock_post.return_value = _response({"code": 0, "msg": "", "data": None})
        result = ProviderClient(ProviderConfig()).call("dividend", {"ts_code": "X"})
        assert len(result) == 0

    @patch("tushare_client.requests.post")
    def test_per_call_delay(self, mock_post):
        mock_post.return_value = _response({"code": 0, "data": {"fields": [], "items": []}})
        client = ProviderClient(ProviderConfig(call_delay=0.2))
        t0 = time.time()
        client.call("daily", {})
        client.call("daily", {})
        assert time.time() - t0 >= 0.35

    def test_config_is_immutable(self):
        cfg = ProviderConfig(token="a")
        with pytest.raises(Exception):
            cfg.token = "b"


# =====================================================================
# RUN_BATCHES
# =====================================================================

class TestRunBatches:
    def test_preserves_order_despite_completion_order(self):
        def worker(item, i):
            # Earlier items finish last
            time.sleep(0.01 * (5 - i % 5))
            return item * 10

        results = run_batches(list(range(12)), worker, window_size=5,
                              inter_batch_delay=0)
        assert results == [i * 10 for i in range(12)]

    def test_worker_receives_global_index(self):
        seen = []
        lock = threading.Lock()

        def worker(item, i):
            with lock:
                seen.append((item, i))
            return i

        items = ["a", "b", "c", "d", "e"]
        with patch("batching.time.sleep"):
            assert run_batches(items, worker, window_size=2) == [0, 1, 2, 3, 4]
        assert sorted(seen) == [(x, i) for i, x in enumerate(items)]

    def test_pause_between_windows_only(self):
        with patch("batching.time.sleep") as mock_sleep:
            run_batches(list(range(7)), lambda x, i: x, window_size=3,
                        inter_batch_delay=0.8)
        # 3 windows -> 2 pauses, none after the last
        assert mock_sleep.call_count == 2
        mock_sleep.assert_called_with(0.8)

    def test_single_window_no_pause(self):
        with patch("batching.time.sleep") as mock_sleep:
            run_batches([1, 2], lambda x, i: x, window_size=10)
        mock_sleep.assert_not_called()

    def test_window_runs_concurrently(self):
        active = {"now": 0, "peak": 0}
        lock = threading.Lock()

        def worker(item, i):
            with lock:
                active["now"] += 1
                active["peak"] = max(active["peak"], active["now"])
            time.sleep(0.2)
            with lock:
                active["now"] -= 1
            return item

        run_batches(list(range(8)), worker, window_size=4, inter_batch_delay=0)
        assert active["peak"] == 4

    def test_empty_input(self):
        assert run_batches([], lambda x, i: x, window_size=3) == []

    def test_invalid_window(self):
        with pytest.raises(ValueError):
            run_batches([1], lambda x, i: x, window_size=0)


class TestIsolatedWorker:
    def test_failure_does_not_abort_siblings(self):
        def fetch(code, i):
            if code == "BAD":
                raise ProviderError("daily", "抱歉，您每分钟最多访问该接口500次")
            return code.lower()

        with patch("batching.time.sleep"):
            outcomes = run_batches(["A", "BAD", "C", "D"], isolated(fetch), window_size=2)

        assert [o.code for o in outcomes] == ["A", "BAD", "C", "D"]
        assert [o.ok for o in outcomes] == [True, False, True, True]
        assert outcomes[0].value == "a"
        assert outcomes[1].value is None
        assert "500" in outcomes[1].error

    def test_outcome_tagging(self):
        assert FetchOutcome("X", 1).ok
        assert not FetchOutcome("X", None, "boom").ok
