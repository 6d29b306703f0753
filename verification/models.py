"""
Session data model.

Status and step are closed enumerations; the session record itself is a
pydantic model so it serialises straight into the session repository.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

MIN_GUESTS = 1
MAX_GUESTS = 10


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    STARTED = "started"
    CONSENT_LOGGED = "consent_logged"
    GUEST_INFO_SAVED = "guest_info_saved"
    DOCUMENT_UPLOADED = "document_uploaded"
    PARTIAL_VERIFIED = "partial_verified"
    VERIFIED = "verified"
    FAILED = "failed"


class Step(str, Enum):
    WELCOME = "welcome"
    DOCUMENT = "document"
    SELFIE = "selfie"
    RESULTS = "results"


class ParsedMRZ(BaseModel):
    """Fields read from a two-line TD3 machine-readable zone"""
    document_type: Optional[str] = None
    issuing_country: Optional[str] = None
    surname: Optional[str] = None
    given_names: Optional[str] = None
    document_number: Optional[str] = None
    nationality: Optional[str] = None
    date_of_birth: Optional[str] = None
    sex: Optional[str] = None
    expiration_date: Optional[str] = None


class IdentityFields(BaseModel):
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    date_of_birth: Optional[str] = None
    date_of_issue: Optional[str] = None
    expiration_date: Optional[str] = None
    nationality: Optional[str] = None
    sex: Optional[str] = None
    document_number: Optional[str] = None
    id_type: Optional[str] = None
    mrz_raw: Optional[str] = None
    mrz_parsed: Optional[ParsedMRZ] = None
    raw_field_map: Dict[str, str] = Field(default_factory=dict)


class ExtractedInfo(BaseModel):
    """
    Extraction state of the session's document.

    ok is None while extraction is in flight, then True or False exactly once.
    """
    text_summary: Optional[str] = None
    ok: Optional[bool] = None
    error: Optional[str] = None
    fields: Optional[IdentityFields] = None
    request_id: Optional[str] = None

    @property
    def pending(self) -> bool:
        return self.ok is None


class VerificationSession(BaseModel):
    token: str
    status: SessionStatus = SessionStatus.STARTED
    current_step: Optional[Step] = Step.WELCOME

    consent_given: Optional[bool] = None
    consent_time: Optional[str] = None
    consent_locale: Optional[str] = None

    guest_name: Optional[str] = None
    reservation_reference: Optional[str] = None

    document_pointer: Optional[str] = None
    selfie_pointers: List[str] = Field(default_factory=list)
    extracted_info: Optional[ExtractedInfo] = None

    is_verified: Optional[bool] = None
    verification_score: Optional[float] = None
    liveness_score: Optional[float] = None
    face_match_score: Optional[float] = None

    expected_guest_count: int = MIN_GUESTS
    verified_guest_count: int = 0
    # None means "derive from the counts"
    requires_additional_guest_override: Optional[bool] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def requires_additional_guest(self) -> bool:
        if self.requires_additional_guest_override is not None:
            return self.requires_additional_guest_override
        return self.verified_guest_count < self.expected_guest_count

    def touch(self) -> None:
        self.updated_at = utcnow()


class Decision(BaseModel):
    """Outcome of one selfie submission"""
    is_verified: bool
    guest_verified: bool
    is_live: bool
    liveness_score: float
    face_match_score: float
    verification_score: float
    expected: int
    verified: int
    requires_additional_guest: bool
    remaining: int
    status: SessionStatus

    def to_response(self) -> Dict[str, Any]:
        return {
            "is_verified": self.is_verified,
            "liveness_score": self.liveness_score,
            "face_match_score": self.face_match_score,
            "verification_score": self.verification_score,
            "expected": self.expected,
            "verified": self.verified,
            "requires_additional_guest": self.requires_additional_guest,
            "remaining": self.remaining,
            "status": self.status.value,
        }
