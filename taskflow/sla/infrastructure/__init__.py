"""
SLA Infrastructure Layer
=========================

Concrete adapters for the SLA ports: SQLAlchemy models and repositories,
in-memory adapters, YAML policy with hot reload, webhook notifications,
and the APScheduler-driven escalation scheduler.
"""
