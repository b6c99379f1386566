"""Unit tests for the SLA infrastructure layer."""
