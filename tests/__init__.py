"""
Tests for the trading risk core.

This package contains tests for:
- Risk manager gates, sizing and protective levels
- Kill switch and position health
- Market data codec, feed and tick cache
- Correlation engine
- Trading session bookkeeping
- Repositories
"""
