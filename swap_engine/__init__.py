"""Swap execution and retry engine for Solana aggregator swaps."""

__version__ = "0.1.0"
