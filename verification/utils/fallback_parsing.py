"""
Fallback Parsing - Deterministic field extraction from caller utterances

Responsibilities:
- Pull dates, SSN digits, emails, amounts, tenure and addresses out of free text
- Classify yes/no replies by keyword
- Serve as the mock/fallback mode of the entity extractor

Design principles:
- Pure functions, no LLM, no I/O
- Return None (never raise) when nothing recognizable is present
- Extracted values are strings, mirroring what the LLM path returns
"""

import re
from datetime import date
from typing import Dict, Iterable, Optional, Tuple

MONTHS = {
    'jan': 1, 'feb': 2, 'mar': 3, 'apr': 4, 'may': 5, 'jun': 6,
    'jul': 7, 'aug': 8, 'sep': 9, 'oct': 10, 'nov': 11, 'dec': 12,
}

MONTH_NAME = (
    r'(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|'
    r'aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?'
)

ISO_DATE = re.compile(r'\b(\d{4})-(\d{1,2})-(\d{1,2})\b')
NUMERIC_DATE = re.compile(r'\b(\d{1,2})[/.-](\d{1,2})[/.-](\d{4})\b')
MONTH_FIRST_DATE = re.compile(
    r'\b' + MONTH_NAME + r'\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})\b', re.IGNORECASE
)
DAY_FIRST_DATE = re.compile(
    r'\b(\d{1,2})(?:st|nd|rd|th)?\s+(?:of\s+)?' + MONTH_NAME + r',?\s+(\d{4})\b',
    re.IGNORECASE
)

DIGIT_WORDS = {
    'zero': '0', 'oh': '0', 'one': '1', 'two': '2', 'three': '3', 'four': '4',
    'five': '5', 'six': '6', 'seven': '7', 'eight': '8', 'nine': '9',
}

NUMBER_WORDS = {
    'one': 1, 'two': 2, 'three': 3, 'four': 4, 'five': 5,
    'six': 6, 'seven': 7, 'eight': 8, 'nine': 9, 'ten': 10, 'eleven': 11,
    'twelve': 12, 'thirteen': 13, 'fourteen': 14, 'fifteen': 15,
    'sixteen': 16, 'seventeen': 17, 'eighteen': 18, 'nineteen': 19,
    'twenty': 20, 'thirty': 30, 'forty': 40, 'fifty': 50,
}

EMAIL_TOKEN = re.compile(r'[^\s@]+@[^\s@]+\.[^\s@]+')
ZIP_CODE = re.compile(r'\b(\d{5}(?:-\d{4})?)\b')
AMOUNT = re.compile(r'(-?)\$?\s*(\d{1,3}(?:,\d{3})+|\d+)(?:\.(\d+))?\s*(k\b|thousand)?', re.IGNORECASE)
YEARS = re.compile(r'(\d+(?:\.\d+)?)\s*(?:years?|yrs?)\b', re.IGNORECASE)
MONTHS_SPAN = re.compile(r'(\d+)\s*(?:months?|mos?)\b', re.IGNORECASE)

UNIT_LABELS = {
    'apt': 'Apartment', 'apartment': 'Apartment', 'unit': 'Unit',
    'suite': 'Suite', 'ste': 'Suite', '#': 'Unit',
}
UNIT_DESIGNATOR = re.compile(
    r'(\bapt|\bapartment|\bunit|\bsuite|\bste|#)\.?\s*#?\s*([0-9][\w-]*|[a-z](?:-?\d+)?)\b',
    re.IGNORECASE
)
BARE_UNIT = re.compile(r'^\s*(?:it\'?s\s+|number\s+)?#?\s*([0-9][\w-]*|[a-z])\s*\.?\s*$', re.IGNORECASE)

POSITIVE_WORDS = {'yes', 'yeah', 'yep', 'correct', 'right', 'true', 'sure'}
NEGATIVE_WORDS = {'no', 'nope', 'wrong', 'incorrect', 'false', 'not'}


def _words(text: str) -> set:
    return set(re.findall(r"[a-z]+", text.lower()))


def contains_any_word(text: str, words: Iterable[str]) -> bool:
    """Whole-word keyword match (so 'know' does not count as 'no')"""
    if not isinstance(text, str):
        return False
    return bool(_words(text) & set(words))


def classify_confirmation(text: str) -> Optional[bool]:
    """
    Keyword yes/no classification

    Negative keywords win so 'no, that's not right' reads as a denial.

    Returns:
        True, False, or None when no keyword is present
    """
    if contains_any_word(text, NEGATIVE_WORDS):
        return False
    if contains_any_word(text, POSITIVE_WORDS):
        return True
    return None


def _build_date(year: str, month: int, day: str) -> Optional[str]:
    try:
        return date(int(year), month, int(day)).isoformat()
    except ValueError:
        return None


def find_date(text: str) -> Tuple[Optional[str], Optional[Tuple[int, int]]]:
    """
    Locate the first recognizable calendar date

    Returns:
        (ISO date string, (start, end) span) or (None, None)
    """
    if not isinstance(text, str):
        return None, None

    match = ISO_DATE.search(text)
    if match:
        return _build_date(match.group(1), int(match.group(2)), match.group(3)), match.span()

    match = MONTH_FIRST_DATE.search(text)
    if match:
        month = MONTHS[match.group(1)[:3].lower()]
        return _build_date(match.group(3), month, match.group(2)), match.span()

    match = DAY_FIRST_DATE.search(text)
    if match:
        month = MONTHS[match.group(2)[:3].lower()]
        return _build_date(match.group(3), month, match.group(1)), match.span()

    match = NUMERIC_DATE.search(text)
    if match:
        return _build_date(match.group(3), int(match.group(1)), match.group(2)), match.span()

    return None, None


def parse_date(text: str) -> Optional[str]:
    """'March 15th, 1985' -> '1985-03-15'"""
    iso, _ = find_date(text)
    return iso


def parse_ssn_last4(text: str) -> Optional[str]:
    """
    Find a four-digit group, spoken or typed

    Any date in the same utterance is removed first so a birth year
    is never mistaken for SSN digits.
    """
    if not isinstance(text, str):
        return None

    _, span = find_date(text)
    if span:
        text = text[:span[0]] + ' ' + text[span[1]:]

    normalized = re.sub(
        r'\b(' + '|'.join(DIGIT_WORDS) + r')\b',
        lambda m: DIGIT_WORDS[m.group(1).lower()],
        text,
        flags=re.IGNORECASE
    )

    for run in re.finditer(r'\d[\d\s-]*\d|\d', normalized):
        digits = re.sub(r'\D', '', run.group(0))
        if len(digits) == 4:
            return digits
    return None


def parse_email(text: str) -> Optional[str]:
    """Literal address, or spoken form ('john dot doe at mail dot com')"""
    if not isinstance(text, str):
        return None

    match = EMAIL_TOKEN.search(text)
    if not match:
        spoken = text.lower()
        spoken = re.sub(r'\s+at\s+', '@', spoken)
        spoken = re.sub(r'\s+dot\s+', '.', spoken)
        # "j o h n" -> "john"
        spoken = re.sub(r'(?<=\b\w) (?=\w\b)', '', spoken)
        match = EMAIL_TOKEN.search(spoken)
        if not match:
            return None

    return match.group(0).rstrip('.,;:!?').lower()


def parse_amount(text: str) -> Optional[str]:
    """'$6,500 a month' -> '6500'; '6.5k' -> '6500'; '-$200' -> '-200'"""
    if not isinstance(text, str):
        return None

    match = AMOUNT.search(text)
    if not match:
        return None

    sign, whole, fraction, multiplier = match.groups()
    whole = whole.replace(',', '')
    value = float(f"{whole}.{fraction}") if fraction else float(whole)
    if multiplier:
        value *= 1000
    if sign:
        value = -value

    return str(int(value)) if value.is_integer() else f"{value:.2f}"


def _replace_number_words(text: str) -> str:
    text = re.sub(r'\ban?\s+(?=(?:year|month)s?\b)', '1 ', text, flags=re.IGNORECASE)
    return re.sub(
        r'\b(' + '|'.join(NUMBER_WORDS) + r')\b',
        lambda m: str(NUMBER_WORDS[m.group(1).lower()]),
        text,
        flags=re.IGNORECASE
    )


def parse_tenure_months(text: str) -> Optional[str]:
    """'2 years and 3 months' -> '27'; bare numbers are months"""
    if not isinstance(text, str):
        return None

    text = _replace_number_words(text)
    years = YEARS.search(text)
    months = MONTHS_SPAN.search(text)

    if years or months:
        total = 0.0
        if years:
            total += float(years.group(1)) * 12
        if months:
            total += int(months.group(1))
        return str(int(round(total)))

    bare = re.search(r'\b(\d+)\b', text)
    return bare.group(1) if bare else None


def parse_unit(text: str, allow_bare: bool = False) -> Optional[str]:
    """
    'apartment 4b' -> 'Apartment 4B'

    Args:
        text: Caller utterance
        allow_bare: Accept a lone token like '4B' (when the unit number
            was asked for directly)
    """
    if not isinstance(text, str):
        return None

    match = UNIT_DESIGNATOR.search(text)
    if match:
        label = UNIT_LABELS[match.group(1).lower()]
        return f"{label} {match.group(2).upper()}"

    if allow_bare:
        match = BARE_UNIT.match(text)
        if match:
            return f"Unit {match.group(1).upper()}"

    return None


def parse_address(text: str) -> Dict[str, Optional[str]]:
    """
    Split 'street, [unit,] city, state, zip' into components

    Returns:
        dict with street, city, state, zip_code (None when missing)
        and unit when one was given inline
    """
    result = {'street': None, 'city': None, 'state': None, 'zip_code': None}
    if not isinstance(text, str):
        return result

    parts = [part.strip(' .') for part in text.split(',')]
    parts = [part for part in parts if part]
    if not parts:
        return result

    # ZIP only counts in the last part, so a house number is never taken for it
    if len(parts) > 1:
        zip_matches = list(ZIP_CODE.finditer(parts[-1]))
        if zip_matches:
            zip_match = zip_matches[-1]
            result['zip_code'] = zip_match.group(1)
            last = parts[-1]
            parts[-1] = (last[:zip_match.start()] + last[zip_match.end():]).strip(' .')
            if not parts[-1]:
                parts.pop()

    # Drop lead-ins like "my address is" - streets start with a number
    first_digit = re.search(r'\d', parts[0])
    if first_digit:
        parts[0] = parts[0][first_digit.start():]

    if len(parts) >= 4 and parse_unit(parts[1]):
        result['unit'] = parse_unit(parts[1])
        parts = [parts[0]] + parts[2:]

    if len(parts) >= 3:
        result['street'] = parts[0]
        result['city'] = parts[-2]
        result['state'] = parts[-1]
    elif len(parts) == 2:
        result['street'] = parts[0]
        result['city'] = parts[1]

    return result


ADDRESS_FIELDS = ('street', 'city', 'state', 'zip_code')


def extract_fields(text: str, schema: Dict[str, str]) -> Dict[str, Optional[str]]:
    """
    Rule-based stand-in for LLM extraction

    Args:
        text: Caller utterance
        schema: field name -> description (descriptions unused here)

    Returns:
        dict with exactly the schema keys; None where nothing was found
    """
    address = None
    result = {}

    for field in schema:
        if field == 'date':
            value = parse_date(text)
        elif field == 'ssn':
            value = parse_ssn_last4(text)
        elif field == 'email':
            value = parse_email(text)
        elif field == 'income':
            value = parse_amount(text)
        elif field == 'tenure':
            value = parse_tenure_months(text)
        elif field == 'unit':
            value = parse_unit(text, allow_bare=True)
        elif field in ADDRESS_FIELDS:
            if address is None:
                address = parse_address(text)
            value = address.get(field)
        else:
            value = None
        result[field] = value

    return result
