"""
Deterministic cover letter text.

Used when generation is slow, fails or returns too little. CV signals
(years of experience, education level, job category) are picked up with
simple patterns and dropped into a fixed skeleton.
"""

from __future__ import annotations

import re
from typing import Optional, Sequence, Tuple

APPLICANT_PLACEHOLDER = "[Applicant Name]"

_YEARS_RE = re.compile(r"(\d+)\s*\+?\s*years?\s*(?:of\s*)?(?:experience|exp)\b", re.IGNORECASE)

# (substrings to look for, phrase); first match wins
EDUCATION_LEVELS: Sequence[Tuple[Tuple[str, ...], str]] = (
    (("master", "msc", "mba", "phd"), "advanced degree"),
    (("bachelor", "bsc", "b.sc", "degree"), "university education"),
    (("diploma", "hnd", "ond"), "professional qualification"),
)

JOB_CATEGORIES: Sequence[Tuple[Tuple[str, ...], str]] = (
    (("account", "finance"), "financial analysis and accounting expertise"),
    (("develop", "software"), "technical skills and programming knowledge"),
    (("engineer",), "an engineering background and technical problem-solving ability"),
    (("market", "sales"), "business development and client relationship expertise"),
    (("manag",), "leadership experience and team management capability"),
    (("admin",), "organizational skills and administrative efficiency"),
)

DEFAULT_CATEGORY_PHRASE = "professional expertise that matches your requirements"


def years_of_experience(cv_text: str) -> Optional[int]:
    m = _YEARS_RE.search(cv_text or "")
    return int(m.group(1)) if m else None


def experience_phrase(years: Optional[int]) -> str:
    if years is None:
        return "a relevant professional background"
    if years >= 5:
        return f"{years}+ years of extensive experience"
    if years >= 2:
        return f"{years} years of solid experience"
    return f"{years} year{'s' if years != 1 else ''} of foundational experience"


def education_phrase(cv_text: str) -> Optional[str]:
    text = (cv_text or "").lower()
    for needles, phrase in EDUCATION_LEVELS:
        if any(n in text for n in needles):
            return phrase
    return None


def category_phrase(job_title: str) -> str:
    title = (job_title or "").lower()
    for needles, phrase in JOB_CATEGORIES:
        if any(n in title for n in needles):
            return phrase
    return DEFAULT_CATEGORY_PHRASE


def default_letter(applicant_name: str) -> str:
    """Generic letter used when nothing target-specific is available."""
    return (
        "Dear Hiring Manager,\n\n"
        "I am writing to express my strong interest in this position at your organization. "
        "My professional background and experience make me well qualified for this role in "
        "Nigeria's competitive job market.\n\n"
        "I have developed skills that align with your requirements and I am confident in my "
        "ability to contribute effectively to your team.\n\n"
        "I would welcome the opportunity to discuss how my experience can benefit your "
        "organization. Thank you for considering my application.\n\n"
        f"Best regards,\n{applicant_name}"
    )


def fallback_letter(cv_text: str, job_title: str, company: str) -> str:
    """
    Target-specific letter built from CV signals.

    Ends with the applicant placeholder; callers substitute the real name.
    """
    title = job_title or "advertised"
    company = company or "your organization"
    education = education_phrase(cv_text)
    background = experience_phrase(years_of_experience(cv_text))
    if education:
        background = f"{education} and {background}"

    return (
        "Dear Hiring Manager,\n\n"
        f"I am writing to express my strong interest in the {title} position at {company}. "
        f"With my {background}, I am well positioned to contribute to your team.\n\n"
        f"My background has given me {category_phrase(job_title)}, which makes me a strong "
        f"candidate for this role. I would be glad to bring these skills to {company}.\n\n"
        "I would welcome the opportunity to discuss how my experience can support your "
        "organization's continued success. Thank you for considering my application.\n\n"
        f"Best regards,\n{APPLICANT_PLACEHOLDER}"
    )
