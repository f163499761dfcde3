"""Tests for the market data feed."""
