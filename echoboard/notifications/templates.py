"""Email templates for notification jobs.

Every notification JobType maps to exactly one template in TEMPLATES.
A template is plain data (subject, heading, body paragraphs, whether to
show the feedback details block, an optional call-to-action link) that
is rendered into both an HTML and a plain-text body. Payload values are
HTML-escaped.
"""

import html
from dataclasses import dataclass
from typing import Any

from echoboard.errors import UnknownJobTypeError
from echoboard.queues.schemas import JobType

DEFAULT_DASHBOARD_URL = "https://echoboard.dev"
SIGNATURE = "Best regards,\nThe EchoBoard Team"


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    heading: str
    paragraphs: tuple[str, ...]
    show_details: bool = False
    status_label: str | None = None
    link_label: str | None = None

    def render(self, data: dict[str, Any]) -> RenderedEmail:
        values = _TemplateValues(data)
        subject = self.subject.format_map(values)
        body = [p.format_map(values) for p in self.paragraphs]

        details: list[tuple[str, str]] = []
        if self.show_details:
            details = [
                ("Title", str(values["feedbackTitle"])),
                ("Rating", f"{values['feedbackRating']}/5"),
            ]
            if self.status_label:
                details.append(("Status", self.status_label))
            else:
                details.append(("Message", str(values["feedbackMessage"])))

        link = str(values["dashboardUrl"]) if self.link_label else None
        greeting = f"Hi {values['userName']},"

        return RenderedEmail(
            subject=subject,
            html=self._render_html(greeting, body, details, link),
            text=self._render_text(greeting, body, details, link),
        )

    def _render_html(
        self,
        greeting: str,
        body: list[str],
        details: list[tuple[str, str]],
        link: str | None,
    ) -> str:
        esc = html.escape
        parts = [
            '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">',
            f"<h2>{esc(self.heading)}</h2>",
            f"<p>{esc(greeting)}</p>",
        ]
        parts.extend(f"<p>{esc(p)}</p>" for p in body)
        if details:
            parts.append('<div style="background: #f5f5f5; padding: 20px; border-radius: 8px;">')
            parts.extend(
                f"<p><strong>{esc(label)}:</strong> {esc(value)}</p>"
                for label, value in details
            )
            parts.append("</div>")
        if link and self.link_label:
            parts.append(f'<p><a href="{esc(link, quote=True)}">{esc(self.link_label)}</a></p>')
        parts.append(f"<p>{esc(SIGNATURE).replace(chr(10), '<br>')}</p>")
        parts.append("</div>")
        return "\n".join(parts)

    def _render_text(
        self,
        greeting: str,
        body: list[str],
        details: list[tuple[str, str]],
        link: str | None,
    ) -> str:
        lines = [self.heading, "", greeting, *body]
        if details:
            lines.append("")
            lines.extend(f"{label}: {value}" for label, value in details)
        if link and self.link_label:
            lines.extend(["", f"{self.link_label}: {link}"])
        lines.extend(["", SIGNATURE])
        return "\n".join(lines)


class _TemplateValues(dict):
    """Payload view that fills in defaults for missing keys."""

    _DEFAULTS = {
        "userName": "there",
        "feedbackTitle": "your feedback",
        "feedbackMessage": "",
        "feedbackRating": "-",
        "dashboardUrl": DEFAULT_DASHBOARD_URL,
    }

    def __init__(self, data: dict[str, Any]):
        super().__init__({k: v for k, v in data.items() if v is not None})

    def __missing__(self, key: str) -> Any:
        return self._DEFAULTS.get(key, "")


TEMPLATES: dict[JobType, EmailTemplate] = {
    JobType.FEEDBACK_CREATED: EmailTemplate(
        subject="Feedback Received: {feedbackTitle}",
        heading="Thank you for your feedback!",
        paragraphs=(
            "We've received your feedback and our team will review it shortly.",
            "We appreciate you taking the time to help us improve!",
        ),
        show_details=True,
    ),
    JobType.FEEDBACK_UPDATED: EmailTemplate(
        subject="Feedback Updated: {feedbackTitle}",
        heading="Your feedback has been updated",
        paragraphs=(
            "Your feedback has been reviewed and updated by our admin team.",
            "Thank you for your continued engagement!",
        ),
        show_details=True,
    ),
    JobType.FEEDBACK_DELETED: EmailTemplate(
        subject="Feedback Removed: {feedbackTitle}",
        heading="Your feedback has been removed",
        paragraphs=(
            "Your feedback \"{feedbackTitle}\" has been removed from EchoBoard.",
            "You are welcome to submit new feedback at any time.",
        ),
        link_label="Submit New Feedback",
    ),
    JobType.FEEDBACK_APPROVED: EmailTemplate(
        subject="Great News! Your Feedback Has Been Approved",
        heading="Your Feedback Has Been Approved!",
        paragraphs=(
            "Great news! Your feedback has been reviewed and approved by our team.",
            "Your feedback will be shared with the relevant team and you'll "
            "receive updates on our progress.",
        ),
        show_details=True,
        status_label="Approved",
        link_label="View Your Dashboard",
    ),
    JobType.FEEDBACK_REJECTED: EmailTemplate(
        subject="Feedback Update: Your Submission Status",
        heading="Feedback Status Update",
        paragraphs=(
            "Thank you for your feedback submission. After careful review, "
            "we've decided not to move forward with this particular suggestion.",
            "We still value your input and encourage you to keep sharing your thoughts.",
        ),
        show_details=True,
        status_label="Not Approved",
        link_label="Submit New Feedback",
    ),
    JobType.WELCOME_EMAIL: EmailTemplate(
        subject="Welcome to EchoBoard!",
        heading="Welcome to EchoBoard!",
        paragraphs=(
            "Welcome to EchoBoard! We're excited to have you on board.",
            "Share your feedback through the dashboard and track the status "
            "of your submissions.",
        ),
    ),
    JobType.REMINDER_EMAIL: EmailTemplate(
        subject="Reminder: Share Your Feedback on EchoBoard",
        heading="We'd Love to Hear from You!",
        paragraphs=(
            "It's been a while since you last shared feedback with us. "
            "Your input is valuable and helps us improve our services.",
            "It only takes a few minutes, and your voice makes a difference!",
        ),
        link_label="Share Your Feedback Now",
    ),
}


def render(job_type: JobType | str, data: dict[str, Any]) -> RenderedEmail:
    """
    Render the email for a notification job.

    Args:
        job_type: Notification kind
        data: Template values from the job payload

    Returns:
        RenderedEmail with subject, HTML and text bodies

    Raises:
        UnknownJobTypeError: The type has no template
    """
    try:
        template = TEMPLATES[JobType(job_type)]
    except (KeyError, ValueError):
        raise UnknownJobTypeError(f"No email template for job type {job_type}") from None
    return template.render(data)
