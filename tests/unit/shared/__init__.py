"""Unit tests for shared infrastructure."""
