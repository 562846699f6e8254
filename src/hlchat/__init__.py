"""Wallet-authenticated trading-room chat: gateway service and room client."""

__version__ = "0.1.0"
