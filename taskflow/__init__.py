"""
Taskflow SLA
============

Deadline tracking with pause/resume, periodic escalation rule evaluation and
per-item deadline reminders for requests and tasks.
"""

__version__ = "1.0.0"
