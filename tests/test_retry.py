import httpx
import pytest
from bulkdeals.core.exceptions import RemoteServiceError
from bulkdeals.services.retry import is_retryable, with_retry


class Flaky:
    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.mark.parametrize("error", [
    RemoteServiceError("rate limited", status_code=429),
    RemoteServiceError("boom", status_code=500),
    RemoteServiceError("unavailable", status_code=503),
    httpx.ReadTimeout("read timed out"),
    RuntimeError("upstream said 503 Service Unavailable"),
    RuntimeError("Request timeout"),
])
def test_transient_errors_are_retryable(error):
    assert is_retryable(error)


@pytest.mark.parametrize("error", [
    RemoteServiceError("bad request", status_code=400),
    RemoteServiceError("forbidden", status_code=403),
    ValueError("No image data in response."),
])
def test_permanent_errors_are_not_retryable(error):
    assert not is_retryable(error)


async def test_success_needs_no_retry():
    operation = Flaky([])
    sleep = SleepRecorder()

    assert await with_retry(operation, delays=[1, 2, 4], sleep=sleep) == "ok"
    assert operation.calls == 1
    assert sleep.delays == []


async def test_retries_follow_backoff_schedule():
    operation = Flaky([
        RemoteServiceError("x", status_code=429),
        RemoteServiceError("x", status_code=503),
    ])
    sleep = SleepRecorder()

    assert await with_retry(operation, delays=[1, 2, 4], sleep=sleep) == "ok"
    assert operation.calls == 3
    assert sleep.delays == [1, 2]


async def test_exhausted_schedule_raises_last_error():
    errors = [RemoteServiceError(f"attempt {i}", status_code=500) for i in range(4)]
    operation = Flaky(errors)
    sleep = SleepRecorder()

    with pytest.raises(RemoteServiceError, match="attempt 3"):
        await with_retry(operation, delays=[1, 2, 4], sleep=sleep)

    assert operation.calls == 4
    assert sleep.delays == [1, 2, 4]


async def test_non_retryable_error_propagates_immediately():
    operation = Flaky([RemoteServiceError("bad request", status_code=400)])
    sleep = SleepRecorder()

    with pytest.raises(RemoteServiceError):
        await with_retry(operation, delays=[1, 2, 4], sleep=sleep)

    assert operation.calls == 1
    assert sleep.delays == []
