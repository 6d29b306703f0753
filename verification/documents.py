"""
Document ingestion.

The upload is validated, converted to JPEG, stored and recorded on the
session; field extraction then runs as a detached task that races a timeout.
Extraction outcomes travel through a queue to a single writer task which
applies them to the session under the session lock. The upload call returns
as soon as extraction is dispatched, so readers poll extracted_info.ok.
"""
import asyncio
import logging
import uuid
from typing import Any, Dict, Optional, Set, Tuple

from .capabilities import DocumentFieldExtractor, ObjectStore, SessionRepository
from .errors import VerificationError
from .imaging import prepare_upload
from .models import ExtractedInfo, SessionStatus, Step
from .normalizer import normalize, summarize
from .repository import SessionLocks
from .sessions import SessionService
from .storage import document_key

logger = logging.getLogger(__name__)

EXTRACTION_UNAVAILABLE = "Text extraction unavailable"


class DocumentIngestionPipeline:
    def __init__(self, sessions: SessionService, store: ObjectStore,
                 extractor: DocumentFieldExtractor, storage_prefix: str = "sessions",
                 min_image_bytes: int = 1000, extraction_timeout: float = 15):
        self.sessions = sessions
        self.store = store
        self.extractor = extractor
        self.storage_prefix = storage_prefix
        self.min_image_bytes = min_image_bytes
        self.extraction_timeout = extraction_timeout

        self._tasks: Set[asyncio.Task] = set()
        # request_id -> token for extractions whose outcome is not yet queued
        self._inflight: Dict[str, str] = {}
        self._outbox: "asyncio.Queue[Tuple[str, ExtractedInfo]]" = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None

    @property
    def repository(self) -> SessionRepository:
        return self.sessions.repository

    @property
    def locks(self) -> SessionLocks:
        return self.sessions.locks

    async def ingest(self, token: str, image_payload: Any,
                     guest_name: Optional[str] = None,
                     reservation_reference: Optional[str] = None) -> Dict[str, Any]:
        image = await asyncio.to_thread(prepare_upload, image_payload, self.min_image_bytes)

        async with self.locks.hold(token):
            session = await self.sessions.load(token)

            if guest_name or reservation_reference:
                name = guest_name or session.guest_name
                reference = reservation_reference or session.reservation_reference
                if (name, reference) != (session.guest_name, session.reservation_reference):
                    await self.sessions.apply_guest_info(session, name, reference)

            pointer = await self.store.put(document_key(self.storage_prefix, token), image, "image/jpeg")

            request_id = uuid.uuid4().hex
            session.document_pointer = pointer
            session.status = SessionStatus.DOCUMENT_UPLOADED
            session.current_step = Step.SELFIE
            session.extracted_info = ExtractedInfo(ok=None, request_id=request_id)
            session.touch()
            await self.repository.save(session)

        self.dispatch(token, request_id, image)
        logger.info("Document accepted for session %s; extraction %s dispatched", token, request_id)
        return {"accepted": True, "extraction": "pending"}

    def dispatch(self, token: str, request_id: str, image: bytes) -> asyncio.Task:
        self._ensure_writer()
        self._inflight[request_id] = token
        task = asyncio.create_task(self._extract(token, request_id, image))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _ensure_writer(self):
        if self._writer is None or self._writer.done():
            self._writer = asyncio.create_task(self._write_back())

    async def _extract(self, token: str, request_id: str, image: bytes) -> None:
        try:
            raw = await asyncio.wait_for(self.extractor.extract(image), timeout=self.extraction_timeout)
            fields = normalize(raw.fields, raw.mrz_text)
            info = ExtractedInfo(ok=True, fields=fields, text_summary=summarize(fields),
                                 request_id=request_id)
            logger.info("Extraction %s succeeded for session %s", request_id, token)
        except asyncio.CancelledError:
            logger.warning("Extraction %s cancelled for session %s", request_id, token)
            await self._abandon(request_id)
            raise
        except asyncio.TimeoutError:
            logger.warning("Extraction %s timed out after %ss for session %s",
                           request_id, self.extraction_timeout, token)
            info = ExtractedInfo(ok=False, error=f"Extraction timed out after {self.extraction_timeout}s",
                                 text_summary=EXTRACTION_UNAVAILABLE, request_id=request_id)
        except VerificationError as e:
            reason = e.details.get("reason") or e.message
            logger.warning("Extraction %s failed for session %s: %s", request_id, token, reason)
            info = ExtractedInfo(ok=False, error=str(reason), text_summary=EXTRACTION_UNAVAILABLE,
                                 request_id=request_id)
        except Exception as e:
            logger.exception("Extraction %s crashed for session %s", request_id, token)
            info = ExtractedInfo(ok=False, error=str(e) or e.__class__.__name__,
                                 text_summary=EXTRACTION_UNAVAILABLE, request_id=request_id)
        self._inflight.pop(request_id, None)
        await self._outbox.put((token, info))

    async def _abandon(self, request_id: str) -> None:
        """Write a terminal failure for an extraction that will never report back"""
        token = self._inflight.pop(request_id, None)
        if token is None:
            return
        info = ExtractedInfo(ok=False, error="Extraction cancelled",
                             text_summary=EXTRACTION_UNAVAILABLE, request_id=request_id)
        try:
            await self._apply(token, info)
        except Exception:
            logger.exception("Failed to store cancelled extraction %s for session %s", request_id, token)

    async def _write_back(self) -> None:
        while True:
            token, info = await self._outbox.get()
            try:
                await self._apply(token, info)
            except Exception:
                logger.exception("Failed to store extraction result for session %s", token)
            finally:
                self._outbox.task_done()

    async def _apply(self, token: str, info: ExtractedInfo) -> None:
        async with self.locks.hold(token):
            session = await self.repository.get(token)
            if session is None:
                logger.warning("Dropping extraction %s: session %s no longer exists", info.request_id, token)
                return
            current = session.extracted_info
            if current is None or not current.pending or current.request_id != info.request_id:
                logger.info("Dropping stale extraction %s for session %s", info.request_id, token)
                return
            session.extracted_info = info
            session.touch()
            await self.repository.save(session)

    async def join(self) -> None:
        """Wait until every dispatched extraction has been written back"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self._outbox.join()

    async def close(self) -> None:
        """
        Cancel in-flight extractions and leave every session with a final
        extraction state: cancelled ones are marked failed, outcomes already
        queued are written before the writer stops.
        """
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        # Tasks cancelled before they started never ran their own handler
        for request_id in list(self._inflight):
            await self._abandon(request_id)
        if self._writer is not None:
            if not self._writer.done():
                await self._outbox.join()
            self._writer.cancel()
            await asyncio.gather(self._writer, return_exceptions=True)
            self._writer = None
