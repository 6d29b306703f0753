import re
from typing import Any, Dict, Optional

from config import FIELD_ALIASES
from .models import IdentityFields, ParsedMRZ
from .mrz import mrz_date_to_iso, parse_td3

# Canonical fields that fall back to the MRZ when OCR has no named value
MRZ_FALLBACK_FIELDS = ("nationality", "sex", "document_number", "date_of_birth", "expiration_date")


def normalize_label(label: Any) -> str:
    """Lower-case a raw OCR label and collapse whitespace to underscores"""
    if label is None:
        return ""
    return re.sub(r"\s+", "_", str(label).strip().lower())


def build_field_map(raw_fields: Optional[Dict[str, Any]]) -> Dict[str, str]:
    field_map = {}
    for label, value in (raw_fields or {}).items():
        key = normalize_label(label)
        if not key or value is None:
            continue
        text = str(value).strip()
        if text:
            field_map[key] = text
    return field_map


def resolve(field_map: Dict[str, str], canonical: str) -> Optional[str]:
    """First value found among the canonical field's label aliases"""
    for alias in FIELD_ALIASES.get(canonical, [canonical]):
        if field_map.get(alias):
            return field_map[alias]
    return None


def _mrz_value(parsed: ParsedMRZ, field: str) -> Optional[str]:
    value = getattr(parsed, field)
    if field == "date_of_birth":
        return mrz_date_to_iso(value)
    if field == "expiration_date":
        return mrz_date_to_iso(value, future=True)
    return value


def compose_full_name(field_map: Dict[str, str], first: Optional[str],
                      middle: Optional[str], last: Optional[str]) -> Optional[str]:
    direct = resolve(field_map, "full_name")
    if direct:
        return direct
    parts = [part for part in (first, middle, last) if part]
    return " ".join(parts) if parts else None


def normalize(raw_ocr_fields: Optional[Dict[str, Any]], mrz_text: Optional[str] = None) -> IdentityFields:
    """
    Merge raw OCR fields and the MRZ into one identity record.

    Exactly one source wins per field: a named OCR field when present,
    otherwise the MRZ-derived value.
    """
    field_map = build_field_map(raw_ocr_fields)

    mrz_raw = mrz_text or resolve(field_map, "mrz")
    parsed = parse_td3(mrz_raw) if mrz_raw else None

    first = resolve(field_map, "first_name")
    middle = resolve(field_map, "middle_name")
    last = resolve(field_map, "last_name")

    values = {}
    for field in MRZ_FALLBACK_FIELDS:
        ocr_value = resolve(field_map, field)
        if ocr_value:
            values[field] = ocr_value
        elif parsed is not None:
            values[field] = _mrz_value(parsed, field)
        else:
            values[field] = None

    return IdentityFields(
        first_name=first,
        middle_name=middle,
        last_name=last,
        full_name=compose_full_name(field_map, first, middle, last),
        date_of_issue=resolve(field_map, "date_of_issue"),
        id_type=resolve(field_map, "id_type"),
        mrz_raw=mrz_raw,
        mrz_parsed=parsed,
        raw_field_map=field_map,
        **values,
    )


def summarize(fields: Optional[IdentityFields]) -> str:
    """Short one-line summary kept next to the structured fields"""
    if fields is None:
        return "No identity fields recognised"
    parts = [
        f"Name: {fields.full_name}" if fields.full_name else None,
        f"Nationality: {fields.nationality}" if fields.nationality else None,
        f"DOB: {fields.date_of_birth}" if fields.date_of_birth else None,
        f"Doc#: {fields.document_number}" if fields.document_number else None,
    ]
    return " | ".join(part for part in parts if part) or "No identity fields recognised"
