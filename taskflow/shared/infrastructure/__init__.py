"""
Infrastructure Layer
=====================

Low-level technical concerns:
- Logging setup
- Metrics export
"""
