"""Message templates and `{{variable}}` substitution."""
from __future__ import annotations

from typing import Any
from urllib.parse import quote


DEFAULT_WARNING_TEMPLATE = """Hi u/{{author}},

Your submission "{{itemTitle}}" needs an explanation comment describing what it shows and why it belongs here.

Please add a top-level comment to your submission within {{warningMinutes}} minutes. If no valid explanation is found by then, the submission will be removed automatically.

[Link to your submission]({{itemUrl}})"""

DEFAULT_REMOVAL_TEMPLATE = """Hi u/{{author}},

Your submission "{{itemTitle}}" has been removed because no explanation comment was added within {{warningMinutes}} minutes of the warning.

To have it reinstated:
1. Add an explanation comment to the submission
2. [Message the moderators]({{appealLink}}) with a link to the submission

[Link to your submission]({{itemUrl}})"""

DEFAULT_REPORT_TEMPLATE = """Hi u/{{author}},

Your submission "{{itemTitle}}" has been {{action}} because no explanation comment was added within {{warningMinutes}} minutes of the warning.

Please add an explanation comment. A moderator will review the submission.

[Link to your submission]({{itemUrl}})"""

DEFAULT_REINSTATEMENT_TEMPLATE = "Thanks for adding an explanation! Your submission has been approved."

DEFAULT_REPORT_REASON = "Missing explanation after warning period"
DEFAULT_REVIEW_REPORT_REASON = "Explanation is short or low quality; please review"

DEFAULT_APPEAL_MESSAGES: dict[str, str] = {
    "appeal_no_item_id_message": (
        "**Unable to process request**\n\n"
        "Could not find a link to a submission in your message. Please include a link to your submission or its id."
    ),
    "appeal_not_found_message": (
        "**Submission not found**\n\nThe submission `{{itemId}}` could not be found. It may have been deleted."
    ),
    "appeal_already_approved_message": (
        "**Submission is already approved**\n\nYour submission is currently visible and has not been removed."
    ),
    "appeal_not_core_removal_message": (
        "**This submission was not removed by the bot**\n\n"
        "It was removed by a moderator. Please contact the moderators directly."
    ),
    "appeal_not_author_message": (
        "**Authorization failed**\n\nOnly the author of a submission may request its reinstatement."
    ),
    "appeal_no_explanation_message": (
        "**No valid explanation found**\n\n{{reason}}\n\n"
        "Please add an explanation comment of at least {{minLength}} characters before requesting reinstatement."
    ),
    "appeal_success_message": (
        "**Submission reinstated!**\n\nYour submission is visible again.\n\n[View your submission]({{itemUrl}})"
    ),
    "appeal_error_message": (
        "**An error occurred**\n\nWe could not process your request. Please contact the moderators directly."
    ),
}

APPEAL_SUBJECT = "Explanation Reinstatement Request"


def render(template: str, **variables: Any) -> str:
    """Replace `{{name}}` placeholders. Unknown placeholders are left as-is; None values are skipped."""
    out = template or ""
    for name, value in variables.items():
        if value is None:
            continue
        out = out.replace("{{" + name + "}}", str(value))
    return out


def appeal_link(community: str, item_id: str, item_url: str) -> str:
    """Pre-filled private-message link to the moderators asking for reinstatement."""
    body = (
        "I have added an explanation to my submission and would like to request reinstatement.\n\n"
        f"Submission: {item_url}\nSubmission ID: {item_id}\n\nThank you!"
    )
    return (
        f"https://www.reddit.com/message/compose?to=/r/{quote(community or '', safe='')}"
        f"&subject={quote(APPEAL_SUBJECT, safe='')}&message={quote(body, safe='')}"
    )


def item_link(permalink: str, fallback: str = "") -> str:
    """Absolute link to an item; host permalinks are usually site-relative."""
    if permalink.startswith("http"):
        return permalink
    if permalink:
        return "https://www.reddit.com" + permalink
    return fallback
