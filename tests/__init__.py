"""Tests for the Taskflow SLA service."""
