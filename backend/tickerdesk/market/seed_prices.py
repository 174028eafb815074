"""Demo prices and per-symbol GBM parameters for the development feed."""

# Reference prices shown when no real provider is configured
SEED_PRICES: dict[str, float] = {
    "AAPL": 178.50,
    "MSFT": 378.25,
    "GOOGL": 141.80,
    "AMZN": 178.35,
    "NVDA": 475.20,
    "META": 505.75,
    "TSLA": 248.50,
    "BRK.B": 385.40,
    "JPM": 182.30,
    "V": 275.15,
}

# sigma: annualized volatility, mu: annualized drift
SYMBOL_PARAMS: dict[str, dict[str, float]] = {
    "AAPL": {"sigma": 0.22, "mu": 0.05},
    "MSFT": {"sigma": 0.20, "mu": 0.05},
    "GOOGL": {"sigma": 0.25, "mu": 0.05},
    "AMZN": {"sigma": 0.28, "mu": 0.05},
    "NVDA": {"sigma": 0.40, "mu": 0.08},
    "META": {"sigma": 0.30, "mu": 0.05},
    "TSLA": {"sigma": 0.50, "mu": 0.03},
    "BRK.B": {"sigma": 0.15, "mu": 0.04},
    "JPM": {"sigma": 0.18, "mu": 0.04},
    "V": {"sigma": 0.17, "mu": 0.04},
}

# Symbols outside the table above start in this range
UNKNOWN_PRICE_RANGE: tuple[float, float] = (100.0, 200.0)
DEFAULT_PARAMS: dict[str, float] = {"sigma": 0.25, "mu": 0.05}

SECTORS: dict[str, set[str]] = {
    "tech": {"AAPL", "MSFT", "GOOGL", "AMZN", "NVDA", "META"},
    "finance": {"BRK.B", "JPM", "V"},
}

SAME_SECTOR_CORR: dict[str, float] = {"tech": 0.6, "finance": 0.5}
CROSS_SECTOR_CORR = 0.3  # Also used for TSLA and unknown symbols
