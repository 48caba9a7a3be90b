"""Copyright (c) 2024 Aiven Ltd
See LICENSE for details.

Test kubemigrate.common.utils

"""

from kubemigrate.common import utils
from kubemigrate.common.exceptions import WaitTimeoutException
from kubemigrate.common.utils import build_netloc, cleanup_for_kubernetes

import datetime
import httpx
import pytest
import respx


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("dc1", "dc1"),
        ("cluster-a", "cluster-a"),
        ("Test Cluster", "testcluster"),
        ("My_Cluster.01", "mycluster01"),
        ("a" * 64, "a" * 64),
    ],
)
def test_cleanup_for_kubernetes(name: str, expected: str) -> None:
    assert cleanup_for_kubernetes(name) == expected


def test_build_netloc_escapes_ipv6() -> None:
    assert build_netloc("::1") == "[::1]"
    assert build_netloc("::1", 8080) == "[::1]:8080"
    assert build_netloc("10.0.0.1", 8080) == "10.0.0.1:8080"


@respx.mock
def test_http_request_connect_failure() -> None:
    respx.get("http://10.0.0.1:8080/foo").mock(side_effect=httpx.ConnectError("refused"))
    assert utils.http_request("http://10.0.0.1:8080/foo", caller="test") is None


@respx.mock
def test_http_request_error_status() -> None:
    respx.get("http://10.0.0.1:8080/foo").mock(return_value=httpx.Response(500, text="nope"))
    assert utils.http_request("http://10.0.0.1:8080/foo", caller="test") is None
    r = utils.http_request("http://10.0.0.1:8080/foo", caller="test", ignore_status_code=True)
    assert r is not None and r.status_code == 500


def test_exponential_backoff_retries_without_sleeping_first(mocker) -> None:
    sleep = mocker.patch("time.sleep")
    assert list(utils.exponential_backoff(initial=1, retries=3)) == [0, 1, 2, 3]
    assert [call.args[0] for call in sleep.call_args_list] == [1, 2, 4]


def test_exponential_backoff_needs_a_bound() -> None:
    with pytest.raises(ValueError):
        utils.exponential_backoff(initial=1)


def test_wait_until_is_bounded_by_attempts(mocker) -> None:
    # A clock that does not move must not turn the wait into an endless loop
    clock = mocker.patch.object(utils, "time")
    clock.monotonic.return_value = 100.0
    predicate = mocker.Mock(return_value=False)
    with pytest.raises(WaitTimeoutException):
        utils.wait_until(predicate, interval=1, timeout=5, what="stuck")
    assert predicate.call_count == 6
    assert [call.args[0] for call in clock.sleep.call_args_list] == [1, 1, 1, 1, 1]


def test_wait_until_returns_once_true() -> None:
    results = iter([False, False, True])
    utils.wait_until(lambda: next(results), interval=0.001, timeout=5, what="third time")


def test_wait_until_times_out() -> None:
    with pytest.raises(WaitTimeoutException, match="waiting until never"):
        utils.wait_until(lambda: False, interval=0.001, timeout=0.05, what="never")


def test_wait_until_propagates_predicate_errors() -> None:
    def predicate() -> bool:
        raise KeyError("gone")

    with pytest.raises(KeyError):
        utils.wait_until(predicate, interval=0.001, timeout=1, what="error")


def test_timedelta_as_short_str() -> None:
    assert utils.timedelta_as_short_str(datetime.timedelta(days=1, seconds=3723)) == "1d 1h 2m 3s"
    assert utils.timedelta_as_short_str(datetime.timedelta(seconds=60)) == "1m"


def test_micro_time_roundtrip() -> None:
    t = datetime.datetime(2024, 5, 6, 7, 8, 9, 123456, tzinfo=datetime.timezone.utc)
    assert utils.format_micro_time(t) == "2024-05-06T07:08:09.123456Z"
    assert utils.parse_time("2024-05-06T07:08:09.123456Z") == t


def test_parse_time_assumes_utc() -> None:
    assert utils.parse_time("2020-01-01T00:00:00").tzinfo == datetime.timezone.utc
