"""ReviewRouter - pull-request reviewer routing and escalation engine.

This package routes normalized pull-request events to reviewers according to
organization-defined, priority-ordered routing rules, and escalates review
assignments that go stale through a reminder/escalation state machine.
"""

__version__ = "0.1.0"
