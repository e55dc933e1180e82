"""
Tests for store-unavailability handling.

Reads are retried a bounded number of times with a linearly growing wait;
mutations are attempted once and surface StoreUnavailableError.
"""

import pytest
from sqlalchemy.exc import OperationalError

from shipment_kernel.exceptions import RequestNotFoundError, StoreUnavailableError
from shipment_kernel.selectors.base import run_with_read_retry
from shipment_kernel.selectors.request_selector import RequestSelector
from shipment_kernel.services.request_service import RequestService
from tests.conftest import CLIENT_ID, address, sample_items


def _store_down() -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception("database is down"))


class TestRunWithReadRetry:
    def test_recovers_after_transient_failures(self):
        calls = []
        waits = []

        def attempt():
            calls.append(1)
            if len(calls) < 3:
                raise _store_down()
            return "ok"

        assert run_with_read_retry("lookup", attempt, retries=3, sleep=waits.append) == "ok"
        assert len(calls) == 3
        assert waits == [0.05, 0.1]

    def test_gives_up_after_budget(self):
        waits = []

        def attempt():
            raise _store_down()

        with pytest.raises(StoreUnavailableError) as exc_info:
            run_with_read_retry(
                "lookup", attempt, retries=2, backoff_seconds=1.0, sleep=waits.append
            )
        assert exc_info.value.attempts == 3
        assert exc_info.value.operation == "lookup"
        assert waits == [1.0, 2.0]

    def test_each_retry_is_logged(self, captured_logs):
        def attempt():
            raise _store_down()

        with pytest.raises(StoreUnavailableError):
            run_with_read_retry("lookup", attempt, retries=2, sleep=lambda seconds: None)

        records = captured_logs()
        retries = [r for r in records if r["message"] == "store_read_retry"]
        assert [r["attempt"] for r in retries] == [1, 2]
        failed = [r for r in records if r["message"] == "store_read_failed"]
        assert failed[0]["operation"] == "lookup"
        assert failed[0]["attempts"] == 3

    def test_other_errors_are_not_retried(self):
        calls = []

        def attempt():
            calls.append(1)
            raise RequestNotFoundError("x")

        with pytest.raises(RequestNotFoundError):
            run_with_read_retry("lookup", attempt, sleep=lambda seconds: None)
        assert len(calls) == 1


class TestEngineStoreFailures:
    def test_read_is_retried_with_fresh_sessions(self, brokerage, create_request, monkeypatch):
        request = create_request()
        original = RequestSelector.get
        sessions = []

        def flaky(self, request_id):
            sessions.append(self.session)
            if len(sessions) == 1:
                raise _store_down()
            return original(self, request_id)

        monkeypatch.setattr(RequestSelector, "get", flaky)
        assert brokerage.get_request(request.id).id == request.id
        assert len(sessions) == 2
        assert sessions[0] is not sessions[1]

    def test_read_exhaustion(self, brokerage, monkeypatch):
        def down(self, request_id):
            raise _store_down()

        monkeypatch.setattr(RequestSelector, "get", down)
        with pytest.raises(StoreUnavailableError) as exc_info:
            brokerage.get_request("anything")
        assert exc_info.value.attempts == brokerage.read_retries + 1

    def test_mutation_is_attempted_once(self, brokerage, monkeypatch):
        calls = []

        def down(self, *args, **kwargs):
            calls.append(1)
            raise _store_down()

        monkeypatch.setattr(RequestService, "create_request", down)
        with pytest.raises(StoreUnavailableError):
            brokerage.create_request(CLIENT_ID, address(), address("Jordan"), sample_items())
        assert len(calls) == 1
        assert brokerage.list_requests() == []
