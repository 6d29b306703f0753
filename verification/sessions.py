import logging
import secrets
from typing import Any, Dict, Optional

from .capabilities import ReservationDirectory, SessionRepository
from .errors import ReservationNotFoundError, SessionNotFoundError, ValidationError
from .models import SessionStatus, Step, VerificationSession, utcnow
from .quorum import GuestQuorum
from .repository import SessionLocks
from .reservations import normalize_guest_name, normalize_reservation_reference
from .steps import infer_step

logger = logging.getLogger(__name__)


def generate_token() -> str:
    """URL-safe session token"""
    return secrets.token_urlsafe(9)


def extraction_state(session: VerificationSession) -> str:
    info = session.extracted_info
    if info is None:
        return "none"
    if info.ok is None:
        return "pending"
    return "succeeded" if info.ok else "failed"


class SessionService:
    """
    Session lifecycle up to the document step: start, consent, guest info.
    """

    def __init__(self, repository: SessionRepository, locks: SessionLocks,
                 reservations: ReservationDirectory):
        self.repository = repository
        self.locks = locks
        self.reservations = reservations

    async def load(self, token: Optional[str]) -> VerificationSession:
        if not token:
            raise ValidationError("Session token required", "MISSING_FIELDS", details={"missing": ["token"]})
        session = await self.repository.get(token)
        if session is None:
            raise SessionNotFoundError(token)
        return session

    async def start(self) -> Dict[str, Any]:
        session = VerificationSession(token=generate_token())
        await self.repository.create(session)
        logger.info("Started verification session %s", session.token)
        return {"session_token": session.token, "verify_url": f"/verify/{session.token}"}

    async def get_view(self, token: str) -> Dict[str, Any]:
        session = await self.load(token)
        quorum = GuestQuorum(session)
        info = session.extracted_info
        return {
            "session_token": session.token,
            "status": session.status.value,
            "current_step": infer_step(session).value,
            "consent_given": session.consent_given,
            "consent_time": session.consent_time,
            "consent_locale": session.consent_locale,
            "guest_name": session.guest_name,
            "reservation_reference": session.reservation_reference,
            "document_uploaded": bool(session.document_pointer),
            "selfie_uploaded": bool(session.selfie_pointers),
            "selfie_count": len(session.selfie_pointers),
            "is_verified": session.is_verified,
            "verification_score": session.verification_score,
            "liveness_score": session.liveness_score,
            "face_match_score": session.face_match_score,
            "extraction": extraction_state(session),
            "extracted_info": info.model_dump(exclude={"request_id"}) if info else None,
            "expected_guest_count": quorum.expected,
            "verified_guest_count": quorum.verified,
            "requires_additional_guest": quorum.requires_additional_guest,
            "remaining_guest_verifications": quorum.remaining,
            "created_at": session.created_at.isoformat(),
            "updated_at": session.updated_at.isoformat(),
        }

    async def log_consent(self, token: str, consent_given: bool,
                          consent_time: Optional[str] = None,
                          consent_locale: Optional[str] = None) -> None:
        async with self.locks.hold(token):
            session = await self.load(token)
            session.consent_given = bool(consent_given)
            session.consent_time = consent_time or utcnow().isoformat()
            session.consent_locale = consent_locale or "en"
            session.status = SessionStatus.CONSENT_LOGGED
            session.current_step = Step.WELCOME
            session.touch()
            await self.repository.save(session)
        logger.info("Consent logged for session %s (given=%s)", token, session.consent_given)

    async def apply_guest_info(self, session: VerificationSession, guest_name: Optional[str],
                               reservation_reference: Optional[str],
                               expected_guest_count: Optional[int] = None) -> GuestQuorum:
        """
        Validate guest info against the reservation directory and set the
        expected guest count. The caller holds the session lock and saves.
        """
        missing = [name for name, value in (("guest_name", guest_name),
                                            ("reservation_reference", reservation_reference))
                   if not (value and str(value).strip())]
        if missing:
            raise ValidationError("Guest name and reservation reference required", "MISSING_FIELDS",
                                  details={"missing": missing})

        reservation = await self.reservations.lookup(
            normalize_guest_name(guest_name),
            normalize_reservation_reference(reservation_reference),
        )
        if reservation is None:
            logger.info("Guest info rejected for session %s: reservation not found", session.token)
            raise ReservationNotFoundError()

        session.guest_name = str(guest_name).strip()
        session.reservation_reference = str(reservation_reference).strip()
        quorum = GuestQuorum(session)
        quorum.set_expected_from_reservation(reservation.adults, override=expected_guest_count)
        return quorum

    async def update_guest(self, token: str, guest_name: Optional[str],
                           reservation_reference: Optional[str],
                           expected_guest_count: Optional[int] = None) -> Dict[str, Any]:
        async with self.locks.hold(token):
            session = await self.load(token)
            quorum = await self.apply_guest_info(session, guest_name, reservation_reference,
                                                 expected_guest_count)
            session.status = SessionStatus.GUEST_INFO_SAVED
            session.current_step = Step.DOCUMENT
            session.touch()
            await self.repository.save(session)

        logger.info("Guest info saved for session %s (expected guests=%d)", token, quorum.expected)
        return quorum.to_dict()
