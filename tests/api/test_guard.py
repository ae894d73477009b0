import time

import pytest

from src.api.services.guard import CallStatus, call_with_timeout


class TestCallWithTimeout:
    @pytest.mark.asyncio
    async def test_success(self):
        outcome = await call_with_timeout(lambda a, b: a + b, 2, 3, timeout=1.0)
        assert outcome.ok
        assert outcome.value == 5

    @pytest.mark.asyncio
    async def test_timeout(self):
        outcome = await call_with_timeout(time.sleep, 0.3, timeout=0.05)
        assert outcome.status is CallStatus.TIMEOUT
        assert outcome.value is None

    @pytest.mark.asyncio
    async def test_error_is_tagged_not_raised(self):
        def boom():
            msg = "connection refused"
            raise ConnectionError(msg)

        outcome = await call_with_timeout(boom, timeout=1.0)
        assert outcome.status is CallStatus.ERROR
        assert outcome.error == "connection refused"
