"""Copy-trade tracker - Position ledger and alerting for tracked Solana wallets."""

__version__ = "0.1.0"
