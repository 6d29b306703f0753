"""
Face verification and scoring.

The liveness signal is a heuristic (eyes open and a reasonably lit image),
not a liveness proof.
"""
import asyncio
import logging
from typing import Any, List, Optional, Tuple

from .capabilities import FaceAnalyzer, FaceAttributes, ObjectStore, UsageRecorder
from .errors import DocumentRequiredError
from .imaging import prepare_upload
from .models import Decision, SessionStatus, Step
from .quorum import GuestQuorum
from .sessions import SessionService
from .storage import selfie_key

logger = logging.getLogger(__name__)

# Provider-side similarity filter, percent
SIMILARITY_THRESHOLD = 80
# Minimum brightness (0-100) for the liveness heuristic
MIN_BRIGHTNESS = 40
# Minimum similarity (0-1) for a guest to pass
MATCH_THRESHOLD = 0.65

LIVE_WEIGHT = 0.4
LIVENESS_WEIGHT = 0.3
SIMILARITY_WEIGHT = 0.3


def liveness_from_attributes(face: Optional[FaceAttributes]) -> Tuple[bool, float]:
    """Return (is_live, liveness_score) for the detected face"""
    if face is None:
        return False, 0.0
    score = max(0.0, min(1.0, (face.confidence or 0) / 100.0))
    is_live = bool(face.eyes_open) and (face.brightness or 0) > MIN_BRIGHTNESS
    return is_live, score


def compute_verification_score(is_live: bool, liveness_score: float, similarity: float) -> float:
    return (LIVE_WEIGHT if is_live else 0.0) + liveness_score * LIVENESS_WEIGHT + similarity * SIMILARITY_WEIGHT


def guest_passes(is_live: bool, similarity: float) -> bool:
    return is_live and similarity >= MATCH_THRESHOLD


def session_status(guest_verified: bool, requires_additional_guest: bool) -> SessionStatus:
    if not guest_verified:
        return SessionStatus.FAILED
    if requires_additional_guest:
        return SessionStatus.PARTIAL_VERIFIED
    return SessionStatus.VERIFIED


class FaceVerificationEngine:
    def __init__(self, sessions: SessionService, store: ObjectStore, analyzer: FaceAnalyzer,
                 usage: UsageRecorder, storage_prefix: str = "sessions",
                 min_image_bytes: int = 1000,
                 operation_costs: Optional[List[Tuple[str, float]]] = None,
                 verification_cost: float = 0.0):
        self.sessions = sessions
        self.store = store
        self.analyzer = analyzer
        self.usage = usage
        self.storage_prefix = storage_prefix
        self.min_image_bytes = min_image_bytes
        self.operation_costs = operation_costs or []
        self.verification_cost = verification_cost

    async def verify(self, token: str, selfie_payload: Any) -> Decision:
        selfie = await asyncio.to_thread(prepare_upload, selfie_payload, self.min_image_bytes)

        async with self.sessions.locks.hold(token):
            session = await self.sessions.load(token)
            if not session.document_pointer:
                raise DocumentRequiredError(token)

            quorum = GuestQuorum(session)
            slot = quorum.next_selfie_slot_index()
            pointer = await self.store.put(selfie_key(self.storage_prefix, token, slot), selfie, "image/jpeg")

            face = await self.analyzer.detect(selfie)
            is_live, liveness_score = liveness_from_attributes(face)

            document = await self.store.get(session.document_pointer)
            best = await self.analyzer.compare(selfie, document, SIMILARITY_THRESHOLD)
            similarity = (best or 0.0) / 100.0

            score = compute_verification_score(is_live, liveness_score, similarity)
            guest_verified = guest_passes(is_live, similarity)
            quorum.record_verification_outcome(guest_verified)
            status = session_status(guest_verified, quorum.requires_additional_guest)

            if slot <= len(session.selfie_pointers):
                session.selfie_pointers[slot - 1] = pointer
            else:
                session.selfie_pointers.append(pointer)
            session.status = status
            session.is_verified = status == SessionStatus.VERIFIED
            session.verification_score = score
            session.liveness_score = liveness_score
            session.face_match_score = similarity
            session.current_step = Step.RESULTS
            session.touch()
            await self.sessions.repository.save(session)

        logger.info(
            "Face verification for session %s slot %d: live=%s liveness=%.2f similarity=%.2f "
            "score=%.2f guest_verified=%s verified=%d/%d status=%s",
            token, slot, is_live, liveness_score, similarity, score, guest_verified,
            quorum.verified, quorum.expected, status.value,
        )

        await self._record_usage(token, session.is_verified)

        return Decision(
            is_verified=session.is_verified,
            guest_verified=guest_verified,
            is_live=is_live,
            liveness_score=liveness_score,
            face_match_score=similarity,
            verification_score=score,
            expected=quorum.expected,
            verified=quorum.verified,
            requires_additional_guest=quorum.requires_additional_guest,
            remaining=quorum.remaining,
            status=status,
        )

    async def _record_usage(self, token: str, verified: bool) -> None:
        """Best-effort bookkeeping; failures never affect the decision"""
        try:
            await self.usage.record_costs(token, self.operation_costs)
        except Exception as e:
            logger.warning("Cost recording failed for session %s (non-blocking): %s", token, e)
        try:
            await self.usage.increment_daily_stats(verified, self.verification_cost)
        except Exception as e:
            logger.warning("Daily stats increment failed (non-blocking): %s", e)
