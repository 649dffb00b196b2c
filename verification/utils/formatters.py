"""
Formatters - Speech-friendly rendering of collected values

Used when building agent prompts that will be read aloud. Every
function falls back to returning its input unchanged when the value
cannot be formatted.
"""

from datetime import datetime
from typing import Any, Mapping

ADDRESS_COMPONENTS = ('street', 'unit', 'city', 'state', 'zip_code')


def _ordinal(day: int) -> str:
    if 11 <= day % 100 <= 13:
        suffix = 'th'
    else:
        suffix = {1: 'st', 2: 'nd', 3: 'rd'}.get(day % 10, 'th')
    return f"{day}{suffix}"


def format_spoken_date(iso_date: Any) -> Any:
    """
    Format YYYY-MM-DD for voice output

    Examples:
        >>> format_spoken_date('1985-03-15')
        'March 15th, 1985'
    """
    try:
        parsed = datetime.strptime(iso_date, '%Y-%m-%d')
    except (TypeError, ValueError):
        return iso_date
    return f"{parsed.strftime('%B')} {_ordinal(parsed.day)}, {parsed.year}"


def format_spoken_digits(digits: Any) -> Any:
    """'7234' -> '7-2-3-4'"""
    if not isinstance(digits, str) or not digits:
        return digits
    return '-'.join(digits)


def format_spoken_email(email: Any) -> Any:
    """
    Spell out an email address letter by letter

    Examples:
        >>> format_spoken_email('jo.e@ab.com')
        'j o dot e at a b dot c o m'
    """
    if not isinstance(email, str) or not email:
        return email

    words = []
    for char in email:
        if char == '@':
            words.append('at')
        elif char == '.':
            words.append('dot')
        elif not char.isspace():
            words.append(char)
    return ' '.join(words)


def format_spoken_currency(amount: Any) -> Any:
    """6500 -> '$6,500'; 1234.5 -> '$1,234.50'"""
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        return amount
    if isinstance(amount, float) and not amount.is_integer():
        return f"${amount:,.2f}"
    return f"${int(amount):,}"


def format_spoken_address(address: Any) -> Any:
    """Comma-join street, unit, city, state and ZIP, skipping blanks"""
    if not isinstance(address, Mapping):
        return address
    parts = [str(address[key]) for key in ADDRESS_COMPONENTS if address.get(key)]
    return ', '.join(parts)


def format_spoken_months(months: Any) -> Any:
    """30 -> '30 months'"""
    if isinstance(months, bool) or not isinstance(months, int):
        return months
    return f"{months} month" if months == 1 else f"{months} months"
