"""Integration tests for the election API HTTP surface."""
