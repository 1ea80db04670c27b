"""Seed prices and per-product parameters for the market simulator."""

# Rough starting prices for the popular USD pairs
SEED_PRICES: dict[str, float] = {
    "BTC-USD": 65000.00,
    "ETH-USD": 3200.00,
    "LTC-USD": 85.00,
    "BCH-USD": 450.00,
    "SOL-USD": 150.00,
    "MATIC-USD": 0.70,
    "LINK-USD": 15.00,
    "AVAX-USD": 35.00,
    "DOT-USD": 7.00,
    "ADA-USD": 0.45,
}

# Per-product GBM parameters
# sigma: annualized volatility (higher = more price movement)
# mu: annualized drift / expected return
PRODUCT_PARAMS: dict[str, dict[str, float]] = {
    "BTC-USD": {"sigma": 0.55, "mu": 0.10},
    "ETH-USD": {"sigma": 0.70, "mu": 0.10},
    "LTC-USD": {"sigma": 0.80, "mu": 0.05},
    "BCH-USD": {"sigma": 0.85, "mu": 0.05},
    "SOL-USD": {"sigma": 1.00, "mu": 0.12},  # High volatility
    "MATIC-USD": {"sigma": 1.10, "mu": 0.05},
    "LINK-USD": {"sigma": 0.95, "mu": 0.06},
    "AVAX-USD": {"sigma": 1.05, "mu": 0.06},
    "DOT-USD": {"sigma": 0.95, "mu": 0.04},
    "ADA-USD": {"sigma": 0.95, "mu": 0.04},
}

# Default parameters for products not in the list above
DEFAULT_PARAMS: dict[str, float] = {"sigma": 0.90, "mu": 0.05}

# Correlation groups for the simulator's Cholesky decomposition
CORRELATION_GROUPS: dict[str, set[str]] = {
    "majors": {"BTC-USD", "ETH-USD"},
    "alts": {"LTC-USD", "BCH-USD", "SOL-USD", "MATIC-USD", "LINK-USD", "AVAX-USD", "DOT-USD", "ADA-USD"},
}

# Correlation coefficients
INTRA_MAJORS_CORR = 0.8  # BTC and ETH move together
INTRA_ALTS_CORR = 0.7
CROSS_GROUP_CORR = 0.6  # Crypto is broadly correlated
