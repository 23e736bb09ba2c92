"""Public exchange market data (Binance REST, no credentials)."""
