"""Test support helpers (not collected as tests)."""
