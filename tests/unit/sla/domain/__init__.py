"""Unit tests for the SLA domain layer."""
