"""
Pytest configuration, fakes and fixtures for the verification tests.
"""
import asyncio
import base64
import io

import pytest
from PIL import Image

from config import Settings
from verification.capabilities import FaceAttributes, RawExtraction, Reservation
from verification.errors import UpstreamServiceError
from verification.repository import InMemorySessionRepository
from verification.reservations import normalize_guest_name, normalize_reservation_reference
from verification.services import Services

TD3_LINE1 = "P<UTOERIKSSON<<ANNA<MARIA<<<<<<<<<<<<<<<<<<<"
TD3_LINE2 = "L898902C36UTO7408122F1204159ZE184226B<<<<<10"


class FakeObjectStore:
    def __init__(self):
        self.objects = {}
        self.puts = []
        self.fail_put = False

    async def put(self, key, data, content_type="image/jpeg"):
        if self.fail_put:
            raise UpstreamServiceError("object store", "put failed")
        self.puts.append(key)
        self.objects[key] = data
        return f"mem://test-bucket/{key}"

    async def get(self, pointer):
        key = pointer.split("mem://test-bucket/", 1)[1]
        return self.objects[key]


class FakeExtractor:
    def __init__(self, result=None, delay=0.0, error=None):
        self.result = result if result is not None else RawExtraction()
        self.delay = delay
        self.error = error
        self.calls = 0
        self.cancelled = False

    async def extract(self, image):
        self.calls += 1
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error:
            raise self.error
        return self.result


class FakeFaceAnalyzer:
    def __init__(self, attributes=None, similarity=None):
        self.attributes = attributes
        self.similarity = similarity
        self.thresholds = []
        self.error = None

    async def detect(self, image):
        if self.error:
            raise self.error
        return self.attributes

    async def compare(self, source, target, threshold):
        self.thresholds.append(threshold)
        return self.similarity


class FakeReservations:
    def __init__(self, rows=None):
        self.rows = {
            (normalize_guest_name(name), normalize_reservation_reference(ref)): adults
            for (name, ref), adults in (rows or {}).items()
        }
        self.lookups = []

    async def lookup(self, guest_name, reservation_reference):
        self.lookups.append((guest_name, reservation_reference))
        adults = self.rows.get((guest_name, reservation_reference))
        return Reservation(adults=adults) if adults is not None else None


class FakeUsage:
    def __init__(self, fail=False):
        self.fail = fail
        self.costs = []
        self.stats = []

    async def record_costs(self, token, entries):
        if self.fail:
            raise RuntimeError("cost table unavailable")
        self.costs.append((token, list(entries)))

    async def increment_daily_stats(self, verified, cost):
        if self.fail:
            raise RuntimeError("stats rpc unavailable")
        self.stats.append((verified, cost))


def live_face(confidence=95.0):
    return FaceAttributes(confidence=confidence, eyes_open=True, brightness=70.0)


def make_jpeg(size=(64, 64)) -> bytes:
    """Noise image; large enough as JPEG to pass the minimum size check"""
    img = Image.effect_noise(size, 64).convert("RGB")
    out = io.BytesIO()
    img.save(out, "JPEG", quality=95)
    return out.getvalue()


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        _env_file=None,
        DATABASE_PATH=str(tmp_path / "sessions.db"),
        LOCAL_STORAGE_DIR=str(tmp_path / "objects"),
        RESERVATIONS_FILE=str(tmp_path / "reservations.json"),
        STORAGE_PREFIX="sessions",
        MIN_IMAGE_BYTES=1000,
        EXTRACTION_TIMEOUT_SECONDS=0.2,
    )


@pytest.fixture
def jpeg_bytes():
    return make_jpeg()


@pytest.fixture
def image_b64(jpeg_bytes):
    return base64.b64encode(jpeg_bytes).decode()


@pytest.fixture
def image_data_url(image_b64):
    return f"data:image/jpeg;base64,{image_b64}"


@pytest.fixture
def tiny_image_b64():
    return base64.b64encode(b"\xff\xd8\xff" + b"x" * 100).decode()


@pytest.fixture
def fakes():
    """Fake collaborators; tests adjust them before building services"""
    return {
        "repository": InMemorySessionRepository(),
        "store": FakeObjectStore(),
        "extractor": FakeExtractor(),
        "analyzer": FakeFaceAnalyzer(attributes=live_face(), similarity=90.0),
        "reservations": FakeReservations({
            ("Anna Eriksson", "RES-1001"): 1,
            ("John Smith", "RES-2002"): 2,
            ("Big Group", "RES-3003"): 14,
        }),
        "usage": FakeUsage(),
    }


@pytest.fixture
def make_services(test_settings, fakes):
    def _make(**overrides):
        return Services.create(test_settings, **{**fakes, **overrides})
    return _make


@pytest.fixture
def td3_text():
    return f"{TD3_LINE1}\n{TD3_LINE2}"
