"""
TD3 (passport) machine-readable zone parsing.

The parser is lenient: OCR output is noisy, so malformed or partial data
degrades to None fields instead of failing the extraction. Absence of an
MRZ is normal and yields None.
"""
import logging
import re
from datetime import date
from typing import Optional, Tuple

from .models import ParsedMRZ

logger = logging.getLogger(__name__)

LINE_LENGTH = 44
FILLER = "<"
# Line 2 must at least reach the end of the expiry date field
MIN_LINE2_LENGTH = 28
MRZ_CHARS = re.compile(r"[A-Z0-9<]+")


def _clean_field(value: str) -> Optional[str]:
    value = value.replace(FILLER, "").strip()
    return value or None


def _clean_name(value: str) -> Optional[str]:
    value = re.sub(r"\s+", " ", value.replace(FILLER, " ")).strip()
    return value or None


def _is_data_line(line: str) -> bool:
    """MRZ alphabet only, with a numeric birth date at its fixed offset"""
    return bool(MRZ_CHARS.fullmatch(line)) and line[13:19].isdigit()


def _split_lines(raw_text: str) -> Optional[Tuple[str, str]]:
    lines = [re.sub(r"\s+", "", line).upper() for line in raw_text.splitlines()]
    lines = [line for line in lines if line]

    # Explicit line breaks: take the last name line / data line pair
    for i in range(len(lines) - 2, -1, -1):
        line1, line2 = lines[i], lines[i + 1]
        if len(line1) >= LINE_LENGTH and len(line2) >= MIN_LINE2_LENGTH and _is_data_line(line2):
            return line1[:LINE_LENGTH], line2[:LINE_LENGTH]

    # Concatenated text: both lines must be present in full
    compact = "".join(lines)
    if len(compact) >= 2 * LINE_LENGTH:
        tail = compact[-2 * LINE_LENGTH:]
        return tail[:LINE_LENGTH], tail[LINE_LENGTH:]
    return None


def parse_td3(raw_text: Optional[str]) -> Optional[ParsedMRZ]:
    """
    Parse a two-line, 44-character-per-line MRZ.

    Returns None when no MRZ can be located in the text.
    """
    if not raw_text or not isinstance(raw_text, str):
        return None

    split = _split_lines(raw_text)
    if split is None:
        return None
    line1, line2 = split
    line2 = line2.ljust(LINE_LENGTH, FILLER)

    names = line1[5:].split(FILLER * 2, 1)
    surname = _clean_name(names[0])
    given_names = _clean_name(names[1]) if len(names) > 1 else None

    return ParsedMRZ(
        document_type=_clean_field(line1[0:2]),
        issuing_country=_clean_field(line1[2:5]),
        surname=surname,
        given_names=given_names,
        document_number=_clean_field(line2[0:9]),
        nationality=_clean_field(line2[10:13]),
        date_of_birth=_clean_field(line2[13:19]),
        sex=_clean_field(line2[20:21]),
        expiration_date=_clean_field(line2[21:27]),
    )


def mrz_date_to_iso(value: Optional[str], future: bool = False,
                    today: Optional[date] = None) -> Optional[str]:
    """
    Convert an MRZ YYMMDD date to YYYY-MM-DD.

    Birth dates (future=False) are placed in the latest century that does not
    put them after today; expiry dates (future=True) are taken as 20YY.
    Values that are not six digits are returned unchanged.
    """
    if not value:
        return None
    if len(value) != 6 or not value.isdigit():
        return value

    yy, month, day = int(value[0:2]), value[2:4], value[4:6]
    if future:
        year = 2000 + yy
    else:
        today = today or date.today()
        year = 2000 + yy if yy <= today.year % 100 else 1900 + yy
    try:
        return date(year, int(month), int(day)).isoformat()
    except ValueError:
        logger.warning("Could not format MRZ date '%s'", value)
        return value

