"""Arbitrage Nexus: opportunity-to-venture orchestration service."""
