import unittest

from quote_hub.services.rate_limit import RateLimiter


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


class RateLimiterTest(unittest.IsolatedAsyncioTestCase):
    async def test_min_interval_spaces_consecutive_calls(self):
        clock = FakeClock()
        limiter = RateLimiter(min_interval_sec=0.5, clock=clock, sleep=clock.sleep)

        for _ in range(3):
            self.assertTrue(await limiter.acquire())

        self.assertEqual(clock.sleeps, [0.5, 0.5])

    def test_reservations_made_back_to_back_queue_up(self):
        clock = FakeClock()
        limiter = RateLimiter(min_interval_sec=0.5, clock=clock)

        delays = [limiter.try_reserve() for _ in range(3)]

        self.assertEqual(delays, [0.0, 0.5, 1.0])

    async def test_quota_rejects_call_over_window_until_it_rolls(self):
        clock = FakeClock()
        limiter = RateLimiter(max_requests=5, window_sec=60.0, clock=clock, sleep=clock.sleep)

        for _ in range(5):
            self.assertTrue(await limiter.acquire())
        self.assertFalse(await limiter.acquire())
        self.assertEqual(limiter.rejected, 1)
        self.assertEqual(limiter.remaining(), 0)

        clock.advance(20)
        self.assertEqual(limiter.seconds_until_reset(), 40.0)
        self.assertFalse(await limiter.acquire())

        clock.advance(40)
        self.assertEqual(limiter.remaining(), 5)
        self.assertTrue(await limiter.acquire())

    def test_without_quota_remaining_is_unbounded(self):
        limiter = RateLimiter(min_interval_sec=0.5)
        self.assertIsNone(limiter.remaining())
        self.assertIsNone(limiter.seconds_until_reset())

    def test_penalize_grows_interval_up_to_cap(self):
        limiter = RateLimiter(min_interval_sec=0.5, backoff_factor=1.5, max_interval_sec=5.0)

        limiter.penalize()
        self.assertAlmostEqual(limiter.min_interval_sec, 0.75)
        limiter.penalize()
        self.assertAlmostEqual(limiter.min_interval_sec, 1.125)
        for _ in range(20):
            limiter.penalize()
        self.assertEqual(limiter.min_interval_sec, 5.0)

        limiter.reset()
        self.assertEqual(limiter.min_interval_sec, 0.5)

    def test_exhaust_spends_the_current_window(self):
        clock = FakeClock()
        limiter = RateLimiter(max_requests=5, window_sec=60.0, clock=clock)
        limiter.try_reserve()

        limiter.exhaust()

        self.assertEqual(limiter.remaining(), 0)
        self.assertIsNone(limiter.try_reserve())

    def test_rejects_invalid_quota(self):
        with self.assertRaises(ValueError):
            RateLimiter(max_requests=0)


if __name__ == "__main__":
    unittest.main()
