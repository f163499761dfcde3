"""Tests for the risk manager."""
