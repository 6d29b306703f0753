"""
Interfaces of the external collaborators the verification core consumes.

Adapters for real providers live in storage.py, extractor.py,
face_analysis.py, reservations.py and repository.py; tests substitute fakes.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Tuple

from .models import VerificationSession


@dataclass
class RawExtraction:
    """Label -> text pairs read from a document image, plus any MRZ text"""
    fields: Dict[str, str] = field(default_factory=dict)
    mrz_text: Optional[str] = None


@dataclass
class FaceAttributes:
    """Attributes of the most prominent face in an image (percent scales)"""
    confidence: float
    eyes_open: bool
    brightness: float


@dataclass
class Reservation:
    adults: int


class ObjectStore(Protocol):
    async def put(self, key: str, data: bytes, content_type: str = "image/jpeg") -> str:
        """Store data under key and return its storage pointer"""

    async def get(self, pointer: str) -> bytes:
        ...


class DocumentFieldExtractor(Protocol):
    async def extract(self, image: bytes) -> RawExtraction:
        ...


class FaceAnalyzer(Protocol):
    async def detect(self, image: bytes) -> Optional[FaceAttributes]:
        """Attributes of the detected face, None when no face is found"""

    async def compare(self, source: bytes, target: bytes, threshold: float) -> Optional[float]:
        """Best similarity (0-100) at or above threshold, None when no match"""


class ReservationDirectory(Protocol):
    async def lookup(self, guest_name: str, reservation_reference: str) -> Optional[Reservation]:
        """Inputs are already normalised; None when no reservation matches"""


class SessionRepository(Protocol):
    async def create(self, session: VerificationSession) -> None:
        ...

    async def get(self, token: str) -> Optional[VerificationSession]:
        ...

    async def save(self, session: VerificationSession) -> None:
        ...


class UsageRecorder(Protocol):
    async def record_costs(self, token: str, entries: List[Tuple[str, float]]) -> None:
        ...

    async def increment_daily_stats(self, verified: bool, cost: float) -> None:
        ...
