"""Unit tests for the SLA application layer."""
