"""Candidate alert and health alert email rendering."""

import html
import re
from urllib.parse import quote

from src.core.schemas import Candidate, CandidateEmailData, HealthStatus, NotificationPayload

NOT_SPECIFIED = "Not specified"

# "5 years", "3+ yrs of ...", "7 שנים"
_EXPERIENCE_YEARS = re.compile(r"(\d+).*?(שנ|year|yr)", re.IGNORECASE)


def extract_experience_years(text: str) -> str:
    """Return the leading year count found in free-text experience, if any."""
    match = _EXPERIENCE_YEARS.search(text or "")
    return match.group(1) if match else NOT_SPECIFIED


def build_candidate_email_data(candidate: Candidate, region: str) -> CandidateEmailData:
    """Flatten a candidate into the fields shown to agencies."""
    primary = candidate.positions[0] if candidate.positions else None
    return CandidateEmailData(
        candidate_id=candidate.id,
        name=candidate.name,
        email=candidate.email,
        phone=candidate.phone,
        previous_job=(primary.title if primary and primary.title else NOT_SPECIFIED),
        experience_years=extract_experience_years(primary.experience if primary else ""),
        requested_positions=", ".join(p.title for p in candidate.positions),
        region=region,
        submission_date=candidate.submission_date,
    )


def render_subject(payload: NotificationPayload) -> str:
    c = payload.candidate
    return f"New Candidate Alert - {c.name} ({c.previous_job})"


def render_distribution_email(payload: NotificationPayload) -> str:
    """HTML body of the candidate alert sent to an agency."""
    c = payload.candidate
    first_name = c.name.split(" ")[0] if c.name else ""
    mailto = (
        f"mailto:{c.email}"
        f"?subject={quote(f'Job Opportunity - {c.requested_positions}')}"
        f"&body={quote(f'Hello {first_name}, I represent {payload.agency_name} recruitment agency...')}"
    )
    experience = (
        f"{c.experience_years} years" if c.experience_years != NOT_SPECIFIED else NOT_SPECIFIED
    )
    rows = [
        ("Full Name", c.name),
        ("Phone Number", c.phone),
        ("Email Address", c.email),
        ("Previous Position", c.previous_job),
        ("Experience", experience),
        ("Requested Positions", c.requested_positions),
        ("Preferred Region", c.region),
        ("Submitted", c.submission_date.strftime("%d/%m/%Y")),
    ]
    cells = "\n".join(
        f'<tr><td style="padding:4px 8px;color:#666">{label}</td>'
        f'<td style="padding:4px 8px"><strong>{html.escape(value)}</strong></td></tr>'
        for label, value in rows
    )
    return f"""\
<html><body style="font-family:Arial,sans-serif;color:#1a1a1a">
<h2 style="color:#2c3e50">New Candidate Match</h2>
<p>Dear recruitment professional,</p>
<p>We have a new candidate that matches your service area and may be of interest to your agency.</p>
<table style="border-collapse:collapse;margin:8px 0">
{cells}
</table>
<p><strong>Professional Summary:</strong> This candidate is actively seeking new opportunities
in the positions listed above within the {html.escape(c.region)} region.</p>
<p>If this profile matches any of your current job openings, please contact the candidate directly.</p>
<p><strong>Note:</strong> This candidate has provided consent for their CV to be distributed
to verified recruitment agencies in our network.</p>
<p><a href="{html.escape(mailto)}" style="color:#1a73e8">Contact Candidate</a></p>
</body></html>
"""


def render_health_alert(health: HealthStatus) -> tuple[str, str]:
    """Return (subject, plain-text body) for a health alert email."""
    m = health.metrics
    subject = f"[{health.status.upper()}] CV distribution health degraded"
    lines = [
        f"Status: {health.status}",
        f"Message: {health.message}",
        f"Attempts (window): {m.total_attempts}",
        f"Successful: {m.successful}",
        f"Failed: {m.failed}",
        f"Success rate: {m.success_rate:.0%}",
        f"Average processing time: {m.avg_processing_time_ms:.0f}ms",
        f"Checked at: {health.checked_at.isoformat()}",
    ]
    if health.issues:
        lines.append("Issues:")
        lines.extend(f"  - {issue}" for issue in health.issues)
    return subject, "\n".join(lines)
