"""
Message bodies for recruiters, applicants and operators.
"""

from __future__ import annotations

import json
from html import escape
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..shared import ApplicationRecord, DispatchResult, ExtractedApplicant, TargetPosting

PLATFORM_NAME = "SmartCV Naija"


def recruiter_subject(target: TargetPosting, applicant: ExtractedApplicant) -> str:
    return f"Application for {target.title} Position - {applicant.name}"


def attachment_filename(applicant_name: str, extension: str) -> str:
    base = "_".join(applicant_name.split()) or "Applicant"
    return f"{base}_CV.{extension}"


def _contact_lines(applicant: ExtractedApplicant) -> List[str]:
    lines = [f"Name: {applicant.name}"]
    if applicant.email:
        lines.append(f"Email: {applicant.email}")
    if applicant.phone:
        lines.append(f"Phone: {applicant.phone}")
    return lines


def recruiter_text(
    target: TargetPosting,
    applicant: ExtractedApplicant,
    letter: str,
    record: ApplicationRecord,
) -> str:
    lines = [
        f"Job Application - {target.title}",
        "",
        f"Position: {target.title}",
        f"Company: {target.company}",
        f"Location: {target.location or 'Not specified'}",
    ]
    if target.salary:
        lines.append(f"Salary: {target.salary}")
    lines += ["", "Applicant Information:"] + _contact_lines(applicant)
    lines += [
        "",
        f"CV Match Score: {record.match_score}% for this position",
        "CV/Resume: the complete CV is attached.",
        "",
        "Cover Letter:",
        letter,
        "",
        "---",
        f"This application was submitted through {PLATFORM_NAME}.",
        f"Application ID: {record.id}",
    ]
    return "\n".join(lines)


def recruiter_html(
    target: TargetPosting,
    applicant: ExtractedApplicant,
    letter: str,
    record: ApplicationRecord,
) -> str:
    salary = f"<p><strong>Salary:</strong> {escape(target.salary)}</p>" if target.salary else ""
    contact = "".join(
        f"<p><strong>{escape(k)}:</strong> {escape(v.strip())}</p>"
        for k, v in (line.split(":", 1) for line in _contact_lines(applicant))
    )
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><title>Job Application - {escape(target.title)}</title></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto;">
  <h1 style="color: #2c3e50;">Job Application</h1>
  <div style="background: #f8f9fa; padding: 15px; border-left: 4px solid #3498db;">
    <h3 style="margin-top: 0;">Position: {escape(target.title)}</h3>
    <p><strong>Company:</strong> {escape(target.company)}</p>
    <p><strong>Location:</strong> {escape(target.location or 'Not specified')}</p>
    {salary}
  </div>
  <div style="background: #e8f6f3; padding: 15px; margin: 20px 0;">
    <h3 style="margin-top: 0;">Applicant Information</h3>
    {contact}
  </div>
  <p style="font-weight: bold;">CV Match Score: {record.match_score}% for this position</p>
  <p><strong>CV/Resume:</strong> the complete CV is attached.</p>
  <h3>Cover Letter</h3>
  <div style="white-space: pre-line;">{escape(letter)}</div>
  <hr>
  <p style="color: #666; font-size: 0.9em;">This application was submitted through <strong>{PLATFORM_NAME}</strong>.</p>
  <p style="color: #999; font-size: 0.8em;">Application ID: {escape(record.id)}</p>
</body>
</html>"""


# --------------------------
# Confirmation
# --------------------------

def confirmation_subject(sent_count: int) -> str:
    return f"Application Confirmation - {sent_count} Jobs Applied Successfully"


def _status_rows(
    targets: Sequence[TargetPosting], results: Sequence[DispatchResult]
) -> List[Tuple[TargetPosting, DispatchResult]]:
    by_id = {r.target_id: r for r in results}
    return [(t, by_id[t.id]) for t in targets if t.id in by_id]


def confirmation_text(
    applicant: ExtractedApplicant,
    targets: Sequence[TargetPosting],
    results: Sequence[DispatchResult],
) -> str:
    sent = sum(1 for r in results if r.success)
    lines = [
        f"Hello {applicant.name},",
        "",
        f"Your CV was sent to {sent} of {len(results)} employers:",
        "",
    ]
    for target, result in _status_rows(targets, results):
        status = "Sent" if result.success else f"Not sent ({result.reason})"
        lines.append(f"- {target.title} at {target.company}: {status}")
    lines += [
        "",
        "What happens next:",
        "- Employers review applications directly and contact shortlisted candidates.",
        "- Keep your phone and email reachable.",
        "",
        f"Thank you for using {PLATFORM_NAME}.",
    ]
    return "\n".join(lines)


def confirmation_html(
    applicant: ExtractedApplicant,
    targets: Sequence[TargetPosting],
    results: Sequence[DispatchResult],
) -> str:
    rows = []
    for target, result in _status_rows(targets, results):
        color = "green" if result.success else "red"
        status = "Sent" if result.success else f"Not sent ({escape(result.reason or '')})"
        rows.append(
            f'<tr><td style="padding: 8px;">{escape(target.title)}</td>'
            f'<td style="padding: 8px;">{escape(target.company)}</td>'
            f'<td style="padding: 8px; color: {color};">{status}</td></tr>'
        )
    sent = sum(1 for r in results if r.success)
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><title>Application Confirmation</title></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto;">
  <h2>Hello {escape(applicant.name)},</h2>
  <p>Your CV was sent to <strong>{sent}</strong> of {len(results)} employers.</p>
  <table style="width: 100%; border-collapse: collapse;">
    <tr><th align="left">Position</th><th align="left">Company</th><th align="left">Status</th></tr>
    {''.join(rows)}
  </table>
  <p>Employers review applications directly and contact shortlisted candidates.
  Keep your phone and email reachable.</p>
  <p>Thank you for using {PLATFORM_NAME}.</p>
</body>
</html>"""


def confirmation_sms(sent_count: int, total: int) -> str:
    return (
        f"Your CV was sent to {sent_count} of {total} employers. "
        "Employers will contact shortlisted candidates directly."
    )


def rejection_text(reason: str) -> str:
    return (
        "We could not process your CV. "
        f"{reason} "
        "Please upload a CV that shows your full name and an email address or phone number."
    )


# --------------------------
# Operator alert
# --------------------------

def alert_subject(error_type: str, masked_requester: str) -> str:
    return f"Critical Error: {error_type} - {masked_requester}"


def alert_text(
    *,
    error_type: str,
    masked_requester: str,
    message: str,
    details: Optional[Mapping[str, Any]] = None,
    stack: Optional[str] = None,
) -> str:
    lines = [
        "Application pipeline failure",
        "",
        f"Error type: {error_type}",
        f"Requester: {masked_requester}",
        f"Message: {message}",
    ]
    for key, value in sorted((details or {}).items()):
        lines.append(f"{key}: {value}")
    if stack:
        lines += ["", "Stack trace:", stack]
    return "\n".join(lines)


def alert_payload(
    *,
    error_type: str,
    masked_requester: str,
    message: str,
    details: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    # details may hold non-JSON values (paths, datetimes)
    return {
        "errorType": error_type,
        "requester": masked_requester,
        "message": message,
        "details": json.loads(json.dumps(dict(details or {}), default=str)),
    }
