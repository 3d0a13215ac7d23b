"""Database query functions for ReviewRouter.

This module provides async query functions for all database entities:
- Organization, repository, and escalation policy lookups
- Reviewer CRUD, eligibility, and workload counts
- Routing rule CRUD, priority rewrites, rotation cursors, and rule set loading
- Review assignment creation, sweeps, compare-and-swap updates, and
  notification bookkeeping
"""

from reviewrouter.database.queries.assignment import (
    compare_and_set_status,
    create_assignment,
    get_assignment,
    get_latest_round,
    get_pending_assignments,
    get_redelivery_candidates,
    list_assignments,
    list_open_assignments_with_reviewers,
    list_routing_failures,
    record_notification_outcome,
    record_routing_failure,
)
from reviewrouter.database.queries.organization import (
    create_organization,
    create_repository,
    get_escalation_policy,
    get_escalation_thresholds,
    get_minimum_reminder_hours,
    get_organization,
    get_repository,
    list_repositories,
    update_organization,
    upsert_escalation_policy,
)
from reviewrouter.database.queries.reviewer import (
    create_reviewer,
    get_reviewer,
    get_reviewer_workload,
    get_reviewers,
    list_team_leads,
    update_reviewer,
)
from reviewrouter.database.queries.rule import (
    advance_rotation_cursor,
    create_rule,
    delete_rule,
    find_rule_by_priority,
    get_rule,
    list_rules,
    load_rule_set,
    set_rule_priorities,
    update_rule,
)

__all__ = [
    # Organization queries
    "create_organization",
    "get_organization",
    "update_organization",
    "create_repository",
    "get_repository",
    "list_repositories",
    "get_escalation_policy",
    "upsert_escalation_policy",
    "get_escalation_thresholds",
    "get_minimum_reminder_hours",
    # Reviewer queries
    "create_reviewer",
    "get_reviewer",
    "update_reviewer",
    "get_reviewers",
    "list_team_leads",
    "get_reviewer_workload",
    # Rule queries
    "create_rule",
    "get_rule",
    "list_rules",
    "find_rule_by_priority",
    "update_rule",
    "delete_rule",
    "set_rule_priorities",
    "advance_rotation_cursor",
    "load_rule_set",
    # Assignment queries
    "create_assignment",
    "get_assignment",
    "get_latest_round",
    "list_assignments",
    "get_pending_assignments",
    "get_redelivery_candidates",
    "compare_and_set_status",
    "record_notification_outcome",
    "list_open_assignments_with_reviewers",
    "record_routing_failure",
    "list_routing_failures",
]
