import asyncio
import unittest

import httpx

from story_api.providers.throttle import SingleFlightThrottle


class FakeSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def responses(*status_codes: int):
    queue = list(status_codes)
    calls: list[int] = []

    async def send() -> httpx.Response:
        calls.append(len(calls) + 1)
        return httpx.Response(queue.pop(0))

    return send, calls


class SingleFlightThrottleTests(unittest.IsolatedAsyncioTestCase):
    async def test_success_needs_no_backoff(self) -> None:
        sleep = FakeSleep()
        send, calls = responses(200)

        response = await SingleFlightThrottle(sleep=sleep).fetch(send)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(calls), 1)
        self.assertEqual(sleep.delays, [])

    async def test_rate_limited_then_success_backs_off_once(self) -> None:
        sleep = FakeSleep()
        send, calls = responses(429, 200)

        response = await SingleFlightThrottle(sleep=sleep).fetch(send)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(calls), 2)
        self.assertEqual(len(sleep.delays), 1)
        self.assertGreaterEqual(sleep.delays[0], 1.0)
        self.assertLessEqual(sleep.delays[0], 1.5)

    async def test_exhausted_retries_return_last_rate_limited_response(self) -> None:
        sleep = FakeSleep()
        send, calls = responses(429, 429, 429)

        with self.assertLogs("story_api.providers.throttle", level="WARNING"):
            response = await SingleFlightThrottle(sleep=sleep).fetch(send)

        self.assertEqual(response.status_code, 429)
        self.assertEqual(len(calls), 3)
        self.assertEqual(len(sleep.delays), 2)
        self.assertGreaterEqual(sleep.delays[1], 2.0)
        self.assertLessEqual(sleep.delays[1], 2.5)

    async def test_other_error_statuses_are_returned_without_retry(self) -> None:
        sleep = FakeSleep()
        send, calls = responses(500)

        response = await SingleFlightThrottle(sleep=sleep).fetch(send)

        self.assertEqual(response.status_code, 500)
        self.assertEqual(len(calls), 1)

    async def test_concurrent_callers_never_overlap(self) -> None:
        throttle = SingleFlightThrottle(sleep=FakeSleep())
        active = 0
        peak = 0
        order: list[str] = []

        def make_send(name: str):
            async def send() -> httpx.Response:
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                self.assertTrue(throttle.in_flight)
                order.append(f"{name}:start")
                for _ in range(3):
                    await asyncio.sleep(0)
                order.append(f"{name}:end")
                active -= 1
                return httpx.Response(200)

            return send

        results = await asyncio.gather(*(throttle.fetch(make_send(name)) for name in "abc"))

        self.assertEqual([response.status_code for response in results], [200, 200, 200])
        self.assertEqual(peak, 1)
        for index in range(0, len(order), 2):
            self.assertEqual(order[index].split(":")[0], order[index + 1].split(":")[0])
        self.assertFalse(throttle.in_flight)


if __name__ == "__main__":
    unittest.main()
