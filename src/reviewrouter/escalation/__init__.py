"""Escalation of stale review assignments.

A periodic sweep advances open assignments through
``pending -> reminded -> escalated`` based on elapsed time, notifying the
reviewer on reminder and the organization's team leads on escalation.
"""
