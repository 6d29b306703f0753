"""
Explicit construction of the service graph from settings.

Every component receives its collaborators; tests build the same graph with
fakes through Services.create().
"""
import logging
from dataclasses import dataclass
from typing import List

from .capabilities import (
    DocumentFieldExtractor,
    FaceAnalyzer,
    ObjectStore,
    ReservationDirectory,
    SessionRepository,
    UsageRecorder,
)
from .documents import DocumentIngestionPipeline
from .errors import ConfigurationError
from .extractor import OpenAIDocumentExtractor, TextractDocumentExtractor
from .face_analysis import OpenAIFaceAnalyzer, RekognitionFaceAnalyzer
from .face_verification import FaceVerificationEngine
from .repository import SessionLocks, SqliteSessionRepository, SqliteUsageRecorder
from .reservations import FileReservationDirectory, HttpReservationDirectory
from .sessions import SessionService
from .storage import LocalObjectStore, S3ObjectStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    sessions: SessionService
    documents: DocumentIngestionPipeline
    faces: FaceVerificationEngine

    @classmethod
    def create(cls, settings, repository: SessionRepository, store: ObjectStore,
               extractor: DocumentFieldExtractor, analyzer: FaceAnalyzer,
               reservations: ReservationDirectory, usage: UsageRecorder) -> "Services":
        sessions = SessionService(repository, SessionLocks(), reservations)
        documents = DocumentIngestionPipeline(
            sessions,
            store,
            extractor,
            storage_prefix=settings.STORAGE_PREFIX,
            min_image_bytes=settings.MIN_IMAGE_BYTES,
            extraction_timeout=settings.EXTRACTION_TIMEOUT_SECONDS,
        )
        faces = FaceVerificationEngine(
            sessions,
            store,
            analyzer,
            usage,
            storage_prefix=settings.STORAGE_PREFIX,
            min_image_bytes=settings.MIN_IMAGE_BYTES,
            operation_costs=[
                ("liveness", settings.COST_LIVENESS_USD),
                ("face_compare", settings.COST_FACE_COMPARE_USD),
            ],
            verification_cost=settings.COST_VERIFICATION_USD,
        )
        return cls(sessions=sessions, documents=documents, faces=faces)

    async def close(self):
        await self.documents.close()


def build_object_store(settings) -> ObjectStore:
    if settings.OBJECT_STORE == "s3":
        return S3ObjectStore(settings.STORAGE_BUCKET, settings.AWS_REGION, settings.PROVIDER_TIMEOUT_SECONDS)
    if settings.OBJECT_STORE == "local":
        return LocalObjectStore(settings.LOCAL_STORAGE_DIR, settings.STORAGE_BUCKET)
    raise ConfigurationError("OBJECT_STORE", f"unknown object store '{settings.OBJECT_STORE}'")


def build_extractor(settings) -> DocumentFieldExtractor:
    if settings.EXTRACTION_PROVIDER == "textract":
        return TextractDocumentExtractor(settings.AWS_REGION, settings.PROVIDER_TIMEOUT_SECONDS)
    if settings.EXTRACTION_PROVIDER == "openai":
        return OpenAIDocumentExtractor(settings.OPENAI_API_KEY, settings.OPENAI_MODEL,
                                       settings.PROVIDER_TIMEOUT_SECONDS)
    raise ConfigurationError("EXTRACTION_PROVIDER", f"unknown provider '{settings.EXTRACTION_PROVIDER}'")


def build_face_analyzer(settings) -> FaceAnalyzer:
    if settings.FACE_PROVIDER == "rekognition":
        return RekognitionFaceAnalyzer(settings.AWS_REGION, settings.PROVIDER_TIMEOUT_SECONDS)
    if settings.FACE_PROVIDER == "openai":
        return OpenAIFaceAnalyzer(settings.OPENAI_API_KEY, settings.FACE_MODEL,
                                  settings.PROVIDER_TIMEOUT_SECONDS)
    raise ConfigurationError("FACE_PROVIDER", f"unknown provider '{settings.FACE_PROVIDER}'")


def build_reservations(settings) -> ReservationDirectory:
    if settings.RESERVATION_SOURCE == "http":
        return HttpReservationDirectory(settings.RESERVATIONS_API_BASE, settings.RESERVATIONS_API_KEY,
                                        settings.PROVIDER_TIMEOUT_SECONDS)
    if settings.RESERVATION_SOURCE == "file":
        return FileReservationDirectory(settings.RESERVATIONS_FILE)
    raise ConfigurationError("RESERVATION_SOURCE", f"unknown source '{settings.RESERVATION_SOURCE}'")


def missing_configuration(settings) -> List[str]:
    """Settings the selected providers need but that are not set"""
    missing = []
    uses_openai = settings.EXTRACTION_PROVIDER == "openai" or settings.FACE_PROVIDER == "openai"
    uses_aws = (settings.OBJECT_STORE == "s3" or settings.EXTRACTION_PROVIDER == "textract"
                or settings.FACE_PROVIDER == "rekognition")
    if uses_openai and not settings.OPENAI_API_KEY:
        missing.append("OPENAI_API_KEY")
    if uses_aws and not settings.AWS_REGION:
        missing.append("AWS_REGION")
    if settings.OBJECT_STORE == "s3" and not settings.STORAGE_BUCKET:
        missing.append("STORAGE_BUCKET")
    if settings.RESERVATION_SOURCE == "http" and not settings.RESERVATIONS_API_BASE:
        missing.append("RESERVATIONS_API_BASE")
    return missing


def build_services(settings) -> Services:
    for key in missing_configuration(settings):
        logger.warning("Missing configuration: %s", key)

    return Services.create(
        settings,
        repository=SqliteSessionRepository(settings.DATABASE_PATH),
        store=build_object_store(settings),
        extractor=build_extractor(settings),
        analyzer=build_face_analyzer(settings),
        reservations=build_reservations(settings),
        usage=SqliteUsageRecorder(settings.DATABASE_PATH),
    )
