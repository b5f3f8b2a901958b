"""Wallet market-cap tranche watcher for Solana SPL tokens."""

__version__ = "0.1.0"
