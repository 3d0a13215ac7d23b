"""Slack Block Kit message builders for reminder and escalation notices."""

from __future__ import annotations

from typing import Any

from reviewrouter.notifications.base import ReviewNotice


def escape_markdown(text: str) -> str:
    """Escape the characters Slack treats as control sequences."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _pr_link(notice: ReviewNotice) -> str:
    title = escape_markdown(notice.pr_title or notice.pull_request_id)
    label = f"#{notice.pr_number}: {title}"
    if notice.pr_url:
        return f"*<{notice.pr_url}|{label}>*"
    return f"*{label}*"


def _view_button(notice: ReviewNotice, text: str) -> list[dict[str, Any]]:
    if not notice.pr_url:
        return []
    return [
        {
            "type": "actions",
            "elements": [
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": text},
                    "url": notice.pr_url,
                    "style": "primary",
                }
            ],
        }
    ]


def reminder_message(notice: ReviewNotice) -> tuple[str, list[dict[str, Any]]]:
    """Build the fallback text and blocks for a review reminder."""
    text = (
        f"Reminder: {notice.repository}#{notice.pr_number} has been waiting for "
        f"your review for {notice.rounded_hours} hours"
    )
    blocks: list[dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": "PR Review Reminder"}},
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f"{_pr_link(notice)}\n\nThis PR has been waiting for your review "
                    f"for *{notice.rounded_hours} hours*."
                ),
            },
            "fields": [
                {"type": "mrkdwn", "text": f"*Repository:*\n{notice.repository}"},
            ],
        },
        *_view_button(notice, "Review Now"),
    ]
    return text, blocks


def escalation_message(notice: ReviewNotice) -> tuple[str, list[dict[str, Any]]]:
    """Build the fallback text and blocks for a team-lead escalation."""
    text = (
        f"Stale PR: {notice.repository}#{notice.pr_number} assigned to "
        f"{notice.reviewer_name} has been awaiting review for {notice.rounded_hours} hours"
    )
    blocks: list[dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": "Stale PR Alert"}},
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f"{_pr_link(notice)}\n\nThis PR has been awaiting review for "
                    f"*{notice.rounded_hours} hours* and may be blocking progress."
                ),
            },
            "fields": [
                {"type": "mrkdwn", "text": f"*Repository:*\n{notice.repository}"},
                {
                    "type": "mrkdwn",
                    "text": f"*Assigned Reviewer:*\n{escape_markdown(notice.reviewer_name)}",
                },
            ],
        },
        *_view_button(notice, "View PR"),
    ]
    return text, blocks
