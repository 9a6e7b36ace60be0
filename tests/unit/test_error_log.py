"""
Tests for failure classification and the persistent error log.
"""

import json

import pytest

from salesindex.protocols import (
    ClientError,
    ErrorType,
    HttpError,
    NetworkError,
    PayloadError,
    RateLimitError,
    ServerError,
)
from salesindex.recovery import ErrorLog, classify_error
from salesindex.recovery.error_log import retry_count_of


@pytest.mark.unit
class TestClassifyError:
    @pytest.mark.parametrize(
        "error,expected",
        [
            (RateLimitError(), ErrorType.RATE_LIMIT),
            (HttpError(429), ErrorType.RATE_LIMIT),
            (ServerError(503), ErrorType.SERVER_ERROR),
            (ClientError(404), ErrorType.CLIENT_ERROR),
            (HttpError(302), ErrorType.CLIENT_ERROR),
            (NetworkError("reset"), ErrorType.NETWORK_ERROR),
            (PayloadError("bad json"), ErrorType.UNKNOWN),
            (RuntimeError("boom"), ErrorType.UNKNOWN),
        ],
    )
    def test_classification(self, error, expected):
        assert classify_error(error) is expected

    def test_retry_count(self):
        assert retry_count_of(ServerError(500, attempts=10)) == 9
        assert retry_count_of(ClientError(404)) == 0
        assert retry_count_of(KeyError("x")) == 0


@pytest.mark.unit
class TestErrorLog:
    def test_add_records_classification(self, tmp_path):
        log = ErrorLog(tmp_path / "errors.json")
        record = log.add("nft001", ServerError(500, attempts=10))

        assert record.error_type is ErrorType.SERVER_ERROR
        assert record.retry_count == 9
        assert record.error_message == "HTTP 500"
        assert log.failed_launchers() == ["nft001"]
        assert len(log) == 1

    def test_explicit_type_wins(self, tmp_path):
        log = ErrorLog(tmp_path / "errors.json")
        record = log.add("nft001", ValueError("odd"), ErrorType.NETWORK_ERROR)
        assert record.error_type is ErrorType.NETWORK_ERROR

    def test_stats(self, tmp_path):
        log = ErrorLog(tmp_path / "errors.json")
        log.add("a", RateLimitError(attempts=10))
        log.add("b", RateLimitError(attempts=10))
        log.add("c", ClientError(404))

        assert log.get_stats() == {
            "total": 3,
            "by_type": {"CLIENT_ERROR": 1, "RATE_LIMIT": 2},
            "by_retry_count": {"0": 1, "9": 2},
        }

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "errors.json"
        log = ErrorLog(path)
        log.add("nft001", NetworkError("reset", attempts=3))
        assert log.save() is True

        document = json.loads(path.read_text())
        assert document["schema_version"] == 1
        assert document["errors"][0]["error_type"] == "NETWORK_ERROR"

        other = ErrorLog(path)
        assert other.load() == 1
        assert other.records == log.records

    def test_load_missing_or_corrupt_is_empty(self, tmp_path):
        path = tmp_path / "errors.json"
        log = ErrorLog(path)
        log.add("x", RuntimeError("boom"))
        assert log.load() == 0
        assert log.records == []

        path.write_text("[]")
        assert log.load() == 0
