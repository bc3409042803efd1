"""Unit tests for priceledger web route modules."""
