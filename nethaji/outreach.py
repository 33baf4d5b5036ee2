"""Outreach message drafts for students and parents by risk level."""

from typing import Dict

from nethaji.config import get_coordinator_info
from nethaji.models import RiskAssessment


def generate_outreach_draft(assessment: RiskAssessment, audience: str = 'parent') -> Dict[str, str]:
    """Generate a message draft tailored to the student's risk level."""
    coordinator = get_coordinator_info()
    name = assessment.name
    greeting = f"Dear parent of {name}" if audience == 'parent' else f"Hi {name}"
    factors = "\n".join(f"- {factor}" for factor in assessment.risk_factors)

    level = assessment.risk_level
    if level == 'low':
        return _low_risk_message(name, greeting, assessment, coordinator)
    if level == 'medium':
        return _medium_risk_message(name, greeting, factors, coordinator)
    if level == 'high':
        return _high_risk_message(name, greeting, factors, assessment, coordinator)
    return _critical_risk_message(name, greeting, factors, assessment, coordinator)


def _signature(coordinator: Dict[str, str]) -> str:
    return f"{coordinator['name']}\n{coordinator['phone']}"


def _low_risk_message(name: str, greeting: str, assessment: RiskAssessment, coordinator: Dict[str, str]) -> Dict[str, str]:
    subject = f"Great going, {name}!"
    body = f"""{greeting},

{name} has attended {assessment.attendance_last_30_days} sessions in the last 30 days and is on a {assessment.current_streak}-day streak with {assessment.points} points.

Keep it up. Every session counts towards the next milestone.

{_signature(coordinator)}"""
    return {'subject': subject, 'body': body}


def _medium_risk_message(name: str, greeting: str, factors: str, coordinator: Dict[str, str]) -> Dict[str, str]:
    subject = f"Checking in on {name}"
    body = f"""{greeting},

We noticed a few things about {name}'s participation recently:
{factors}

A little encouragement at home goes a long way. Please let us know if anything is making it hard to attend.

{_signature(coordinator)}"""
    return {'subject': subject, 'body': body}


def _high_risk_message(name: str, greeting: str, factors: str, assessment: RiskAssessment,
                       coordinator: Dict[str, str]) -> Dict[str, str]:
    subject = f"{name} has been missing sessions"
    body = f"""{greeting},

{name} attended {assessment.attendance_last_7_days} sessions in the last week and {assessment.attendance_last_30_days} in the last 30 days.
{factors}

Please call us so we can plan together how to bring {name} back to regular sessions.

{_signature(coordinator)}"""
    return {'subject': subject, 'body': body}


def _critical_risk_message(name: str, greeting: str, factors: str, assessment: RiskAssessment,
                           coordinator: Dict[str, str]) -> Dict[str, str]:
    subject = f"Urgent: please contact us about {name}"
    body = f"""{greeting},

We are worried about {name}. Our records show:
{factors}

{name} has {assessment.attendance_last_30_days} sessions in the last 30 days. Please contact the program coordinator as soon as possible so a teacher can visit and help {name} return.

{_signature(coordinator)}"""
    return {'subject': subject, 'body': body}
