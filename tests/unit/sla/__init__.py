"""Unit tests for the SLA module."""
