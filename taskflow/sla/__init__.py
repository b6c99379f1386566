"""
SLA Escalation Module
=====================

Bounded context for deadline tracking and escalation.

Responsibilities:
- Track pausable SLA deadlines on requests and tasks
- Evaluate escalation rules on a fixed interval
- Record escalations at most once per (item, rule) until resolved
- Schedule one-shot reminders ahead of effective deadlines
- Hot-reload escalation rules from YAML via watchdog
"""
