"""
SLA Interfaces Layer
=====================

FastAPI routes for the SLA module.
"""

from taskflow.sla.interfaces.controllers import router as sla_router

__all__ = ["sla_router"]
