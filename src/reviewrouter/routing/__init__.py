"""Rule-based reviewer routing.

The routing pipeline turns a normalized pull-request event into persisted
review assignments:

    PullRequestEvent -> RoutingEngine (RuleCache) -> ReviewerSelector
        -> AssignmentWriter -> ReviewAssignment rows

RoutingService in ``reviewrouter.routing.service`` wires the stages
together inside a single store transaction.
"""
