import random
import unittest
from datetime import datetime

from quote_hub.integrations.demo import (
    DemoQuoteProvider,
    base_price,
    simulated_extended_hours,
    symbol_hash,
)
from quote_hub.services.market_hours import US_EASTERN

WEDNESDAY_MIDDAY = datetime(2024, 1, 3, 12, 0, tzinfo=US_EASTERN)


class DemoProviderTest(unittest.IsolatedAsyncioTestCase):
    def test_hash_and_base_price_are_stable(self):
        self.assertEqual(symbol_hash("A"), 65)
        self.assertEqual(symbol_hash("AB"), 65 * 31 + 66)
        self.assertEqual(base_price("AAPL"), base_price("AAPL"))
        self.assertTrue(10 <= base_price("AAPL") < 200)
        self.assertTrue(50 <= base_price("IBM") < 500)

    async def test_quotes_are_simulated_and_stay_near_base(self):
        provider = DemoQuoteProvider(rng=random.Random(7), now=lambda: WEDNESDAY_MIDDAY)
        base = base_price("AAPL")

        for _ in range(20):
            quote = await provider.fetch_quote("AAPL")
            self.assertTrue(quote.simulated)
            self.assertEqual(quote.provider, "Demo")
            self.assertEqual(quote.previous_close, round(base, 2))
            self.assertLessEqual(abs(quote.price - base), base * 0.1 + 0.01)
            self.assertEqual(quote.market_state, "REGULAR")

        self.assertEqual(provider.priority, 99)
        self.assertEqual(provider.request_count, 20)

    async def test_rejects_malformed_symbols(self):
        provider = DemoQuoteProvider()
        self.assertIsNone(await provider.fetch_quote("ZZZZZ999"))
        self.assertEqual(await provider.search_symbols("not a symbol"), [])
        self.assertEqual([m.symbol for m in await provider.search_symbols("msft")], ["MSFT"])

    def test_extended_hours_follow_the_session(self):
        pre = simulated_extended_hours("AAPL", 100.0, datetime(2024, 1, 3, 7, 0, tzinfo=US_EASTERN))
        self.assertEqual(pre["market_state"], "PRE")
        self.assertIn("pre_market_price", pre)
        self.assertNotIn("post_market_price", pre)

        post = simulated_extended_hours("AAPL", 100.0, datetime(2024, 1, 3, 18, 0, tzinfo=US_EASTERN))
        self.assertEqual(post["market_state"], "POST")
        self.assertTrue(post["has_extended_data"])
        self.assertGreater(post["post_market_price"], 0)

        weekend = simulated_extended_hours("AAPL", 100.0, datetime(2024, 1, 6, 18, 0, tzinfo=US_EASTERN))
        self.assertEqual(weekend, {"market_state": "CLOSED", "has_extended_data": False})


if __name__ == "__main__":
    unittest.main()
