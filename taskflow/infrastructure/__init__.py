"""
Infrastructure Package
======================

Shared infrastructure: database engine and session lifecycle.
"""
