"""
Shared Kernel Module
====================

Generic infrastructure shared by the SLA bounded context and the application
entry point: structured logging, pass metrics export and HTTP middleware.

DO NOT add escalation or clock business logic to the shared kernel.
"""
