import unittest
from datetime import datetime, timezone

from fastapi.testclient import TestClient

from quote_hub.integrations.base import BaseQuoteProvider
from quote_hub.main import create_app
from quote_hub.schemas.quote import Quote, SymbolMatch
from quote_hub.services.provider_manager import QuoteProviderManager


class StubProvider(BaseQuoteProvider):
    def __init__(self, name: str, priority: int, prices: dict, matches=None) -> None:
        self.name = name
        super().__init__(priority=priority)
        self.prices = prices
        self.matches = matches or []

    async def _fetch_quote(self, symbol: str):
        price = self.prices.get(symbol)
        if price is None:
            return None
        return Quote(
            symbol=symbol,
            name=f"{symbol} Inc.",
            price=price,
            change=1.0,
            change_percent=0.5,
            previous_close=price - 1,
            day_high=price,
            day_low=price,
            year_high=price,
            year_low=price,
            last_update=datetime(2024, 1, 3, 15, 0, tzinfo=timezone.utc),
            provider=self.name,
        )

    async def _search(self, query: str):
        return list(self.matches)


class ApiContractTest(unittest.TestCase):
    def setUp(self):
        self.primary = StubProvider("Primary", 1, {"AAPL": 150.0, "MSFT": 400.0},
                                    matches=[SymbolMatch(symbol="AAPL", name="Apple Inc.")])
        self.backup = StubProvider("Backup", 2, {"TSLA": 250.0})
        self.manager = QuoteProviderManager([self.primary, self.backup])
        self.client = TestClient(create_app(self.manager))

    def test_get_quote(self):
        res = self.client.get("/v1/quotes/aapl")

        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertEqual(body["symbol"], "AAPL")
        self.assertEqual(body["price"], 150.0)
        self.assertEqual(body["provider"], "Primary")
        self.assertEqual(body["last_update"], "2024-01-03T15:00:00Z")
        self.assertFalse(body["simulated"])

    def test_get_quote_not_found(self):
        res = self.client.get("/v1/quotes/NOPE")
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["detail"], "SYMBOL_NOT_FOUND")

    def test_get_quote_preferred_without_fallback(self):
        res = self.client.get(
            "/v1/quotes/AAPL", params={"preferred_provider": "Backup", "allow_fallback": "false"}
        )
        self.assertEqual(res.status_code, 404)

        res = self.client.get("/v1/quotes/TSLA", params={"preferred_provider": "Backup"})
        self.assertEqual(res.json()["provider"], "Backup")

    def test_get_quotes_reports_missing(self):
        res = self.client.get("/v1/quotes", params={"symbols": "AAPL, tsla,nope,AAPL"})

        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertEqual(sorted(body["quotes"]), ["AAPL", "TSLA"])
        self.assertEqual(body["missing"], ["NOPE"])

    def test_post_batch(self):
        res = self.client.post("/v1/quotes/batch", json={"symbols": ["MSFT", "AAPL"], "max_concurrency": 2})

        self.assertEqual(res.status_code, 200)
        self.assertEqual(list(res.json()["quotes"]), ["MSFT", "AAPL"])
        self.assertEqual(res.json()["missing"], [])

    def test_batch_input_validation(self):
        self.assertEqual(self.client.post("/v1/quotes/batch", json={"symbols": []}).json()["detail"],
                         "SYMBOLS_REQUIRED")
        self.assertEqual(
            self.client.post("/v1/quotes/batch", json={"symbols": ["AAPL"], "max_concurrency": 0}).status_code,
            422,
        )
        many = ",".join(f"S{i}" for i in range(51))
        res = self.client.get("/v1/quotes", params={"symbols": many})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["detail"], "TOO_MANY_SYMBOLS")

    def test_validate_symbol(self):
        res = self.client.post("/v1/symbols/validate", json={"symbol": "aapl"})
        self.assertEqual(
            res.json(),
            {"valid": True, "symbol": "AAPL", "name": "AAPL Inc.", "price": 150.0, "provider": "Primary"},
        )

        res = self.client.post("/v1/symbols/validate", json={"symbol": "ABCD"})
        self.assertEqual(res.status_code, 200)
        self.assertFalse(res.json()["valid"])

        res = self.client.post("/v1/symbols/validate", json={"symbol": "ZZZZZ999"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["detail"], "INVALID_SYMBOL_FORMAT")

    def test_search_symbols(self):
        res = self.client.get("/v1/symbols/search", params={"q": " apple "})
        self.assertEqual(
            res.json(), {"query": "apple", "results": [{"symbol": "AAPL", "name": "Apple Inc."}], "count": 1}
        )
        self.assertEqual(self.client.get("/v1/symbols/search", params={"q": " "}).status_code, 400)

    def test_provider_status(self):
        res = self.client.get("/v1/providers/status")

        body = res.json()
        self.assertEqual([p["name"] for p in body["providers"]], ["Primary", "Backup"])
        self.assertTrue(body["providers"][0]["is_available"])
        self.assertEqual(body["config"]["cache_ttl_sec"], 60.0)

    def test_set_default_provider(self):
        res = self.client.post("/v1/providers/default", json={"name": "Backup"})
        self.assertEqual(res.json(), {"success": True, "order": ["Backup", "Primary"]})

        res = self.client.post("/v1/providers/default", json={"name": "Nope"})
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["detail"], "PROVIDER_NOT_FOUND")

    def test_reset_provider(self):
        self.primary.error_count = 4
        res = self.client.post("/v1/providers/Primary/reset")
        self.assertEqual(res.json(), {"success": True, "provider": "Primary"})
        self.assertEqual(self.primary.error_count, 0)
        self.assertEqual(self.client.post("/v1/providers/Nope/reset").status_code, 404)

    def test_health_check(self):
        res = self.client.post("/v1/providers/health-check")
        self.assertEqual(res.json(), {"results": {"Primary": True, "Backup": False}, "healthy": 1, "total": 2})

    def test_cache_clear_and_metrics(self):
        self.client.get("/v1/quotes/AAPL")
        self.client.get("/v1/quotes/AAPL")

        metrics = self.client.get("/v1/metrics/quote").json()
        self.assertEqual(metrics["quote_requests"], 2)
        self.assertEqual(metrics["cache_served"], 1)
        self.assertEqual(metrics["cache"]["size"], 1)

        res = self.client.post("/v1/cache/clear")
        self.assertEqual(res.json()["cache"]["size"], 0)


if __name__ == "__main__":
    unittest.main()
