"""
Validators - Deterministic checks for collected applicant fields

Responsibilities:
- Format and range checks for DOB, SSN last four, email, income, tenure, address
- Exact identity match against the applicant record

Design principles:
- Pure predicates (no side effects, no logging)
- Never raise for bad input - wrong type or shape returns False
- No LLM involvement anywhere in this module
"""

import re
from datetime import date, datetime
from typing import Any, Mapping, Optional

# Always used with fullmatch: "$" would accept a trailing newline
DOB_PATTERN = re.compile(r'\d{4}-\d{2}-\d{2}')
EMAIL_PATTERN = re.compile(r'[^\s@]+@[^\s@]+\.[^\s@]+')
ZIP_PATTERN = re.compile(r'\d{5}(-\d{4})?')
REPEATED_DIGITS_PATTERN = re.compile(r'(\d)\1{3}')

MINIMUM_AGE_YEARS = 18
MAX_MONTHLY_INCOME = 100000
MAX_TENURE_MONTHS = 600  # 50 years

ADDRESS_REQUIRED_FIELDS = ('street', 'city', 'state', 'zip_code')


def _is_number(value: Any) -> bool:
    # bool is an int subclass; "True" is not an income
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _age_on(born: date, today: date) -> int:
    before_birthday = (today.month, today.day) < (born.month, born.day)
    return today.year - born.year - (1 if before_birthday else 0)


def validate_dob(value: Any, today: Optional[date] = None) -> bool:
    """
    Check a date of birth string

    Args:
        value: Candidate date in YYYY-MM-DD form
        today: Evaluation date (defaults to date.today())

    Returns:
        bool: True if a real calendar date, not in the future, age >= 18
    """
    if not isinstance(value, str) or not DOB_PATTERN.fullmatch(value):
        return False

    try:
        born = datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError:
        return False

    today = today or date.today()
    if born > today:
        return False

    return _age_on(born, today) >= MINIMUM_AGE_YEARS


def validate_ssn_last4(value: Any) -> bool:
    """
    Check last four SSN digits

    Non-digit characters are stripped first. Four identical digits
    (0000 through 9999) are always rejected.
    """
    if not isinstance(value, str):
        return False

    digits = re.sub(r'\D', '', value)
    if len(digits) != 4:
        return False

    return not REPEATED_DIGITS_PATTERN.fullmatch(digits)


def validate_email(value: Any) -> bool:
    """Check simple local@domain.tld shape"""
    if not isinstance(value, str) or not EMAIL_PATTERN.fullmatch(value):
        return False

    domain = value.split('@', 1)[1]
    return not domain.startswith('.')


def validate_income(value: Any) -> bool:
    """Monthly income must be numeric, above zero, at most 100,000"""
    if not _is_number(value):
        return False
    return 0 < value <= MAX_MONTHLY_INCOME


def validate_tenure(value: Any) -> bool:
    """Job tenure in months must be numeric, 0 to 600 inclusive"""
    if not _is_number(value):
        return False
    return 0 <= value <= MAX_TENURE_MONTHS


def validate_address(value: Any) -> bool:
    """
    Check a structured mailing address

    Requires non-empty string street, city, state and a 5-digit or
    ZIP+4 zip_code. Unit is optional and not checked.
    """
    if not isinstance(value, Mapping):
        return False

    for field in ADDRESS_REQUIRED_FIELDS:
        component = value.get(field)
        if not isinstance(component, str) or not component.strip():
            return False

    return bool(ZIP_PATTERN.fullmatch(value['zip_code']))


def validate_identity(dob: Any, ssn_last4: Any, applicant) -> bool:
    """
    Exact match of both identity fields against the applicant record

    Both components are required. No normalization, no partial credit.

    Args:
        dob: Collected date of birth (YYYY-MM-DD)
        ssn_last4: Collected last four SSN digits
        applicant: ApplicantRecord with date_of_birth and ssn_last_four

    Returns:
        bool: True only if both match exactly
    """
    is_dob_match = dob is not None and dob == applicant.date_of_birth
    is_ssn_match = ssn_last4 is not None and ssn_last4 == applicant.ssn_last_four
    return is_dob_match and is_ssn_match
