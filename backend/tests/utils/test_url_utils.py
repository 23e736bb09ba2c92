"""Tests for backend/cryptex/utils/url_utils.py"""

from cryptex.utils.url_utils import ensure_url_scheme, unique_origins, url_host, url_origin


class TestEnsureUrlScheme:
    def test_bare_domain_gets_https(self):
        assert ensure_url_scheme("api.binance.com") == "https://api.binance.com"

    def test_scheme_relative(self):
        assert ensure_url_scheme("//api.binance.us") == "https://api.binance.us"

    def test_existing_scheme_kept(self):
        assert ensure_url_scheme(" http://localhost:9000 ") == "http://localhost:9000"

    def test_blank(self):
        assert ensure_url_scheme("   ") == ""


class TestUrlOrigin:
    def test_strips_path_and_query_and_lowercases(self):
        assert url_origin("HTTPS://API.Binance.com/api/v3/ticker?symbol=BTC") == "https://api.binance.com"

    def test_keeps_port(self):
        assert url_origin("http://127.0.0.1:8080/x") == "http://127.0.0.1:8080"

    def test_blank_is_none(self):
        assert url_origin(None) is None
        assert url_origin("  ") is None


def test_url_host():
    assert url_host("https://api.binance.us/api/v3") == "api.binance.us"
    assert url_host(None) is None


def test_unique_origins_dedupes_in_order():
    urls = ["https://api.binance.com/", "api.binance.com", None, "", "https://api.binance.us"]
    assert unique_origins(urls) == ["https://api.binance.com", "https://api.binance.us"]
