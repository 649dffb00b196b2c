"""
Prompt Context - Render-only view of the call state

derive_context() is called fresh before every prompt render. Its output
is never written back to ConversationState, so formatted strings can
never drift from the validated values they came from.
"""

from typing import Any, Dict

from verification.utils.formatters import (
    format_spoken_address,
    format_spoken_currency,
    format_spoken_date,
    format_spoken_digits,
    format_spoken_email,
    format_spoken_months,
)

SELF_EMPLOYED = 'self_employed'


def derive_context(state, applicant) -> Dict[str, Any]:
    """
    Build the template context for the current render

    Args:
        state: ConversationState (read only)
        applicant: ApplicantRecord

    Returns:
        dict: Speech-formatted values keyed by template name. Keys for
            fields not yet collected are absent.
    """
    data = state.collected_data
    context: Dict[str, Any] = {
        'applicant_name': applicant.name,
        'has_discrepancy': state.discrepancy_pending,
        'discrepancy_shown': state.discrepancy_shown,
        'application_tenure': applicant.job_tenure_months,
        'self_employed': data.get('employment_status') == SELF_EMPLOYED,
        'no_email': bool(data.get('no_email')),
    }

    if data.get('dob'):
        context['dob'] = format_spoken_date(data['dob'])
    if data.get('ssn_last4'):
        context['ssn'] = format_spoken_digits(data['ssn_last4'])
    if data.get('address'):
        context['address'] = format_spoken_address(data['address'])
    if data.get('email'):
        context['email'] = format_spoken_email(data['email'])
    if data.get('monthly_income') is not None:
        context['monthly_income'] = format_spoken_currency(data['monthly_income'])
    if data.get('job_tenure') is not None:
        context['job_tenure'] = format_spoken_months(data['job_tenure'])
        context['stated_tenure'] = data['job_tenure']

    return context
