"""
Tests for building the service graph from settings.
"""
import pytest

from conftest import run
from verification.errors import ConfigurationError
from verification.extractor import OpenAIDocumentExtractor, TextractDocumentExtractor
from verification.face_analysis import RekognitionFaceAnalyzer
from verification.repository import SqliteSessionRepository
from verification.reservations import FileReservationDirectory, HttpReservationDirectory
from verification.services import (
    build_extractor,
    build_face_analyzer,
    build_object_store,
    build_reservations,
    build_services,
    missing_configuration,
)
from verification.storage import LocalObjectStore, S3ObjectStore


def configured(settings, **values):
    return settings.model_copy(update=values)


class TestProviderSelection:
    def test_defaults(self, test_settings):
        settings = configured(test_settings, OPENAI_API_KEY="sk-test")
        assert isinstance(build_object_store(settings), LocalObjectStore)
        assert isinstance(build_extractor(settings), OpenAIDocumentExtractor)
        assert isinstance(build_reservations(settings), FileReservationDirectory)

    def test_aws_providers(self, test_settings):
        settings = configured(test_settings, OBJECT_STORE="s3", STORAGE_BUCKET="b", AWS_REGION="eu-west-1",
                              EXTRACTION_PROVIDER="textract", FACE_PROVIDER="rekognition",
                              RESERVATION_SOURCE="http", RESERVATIONS_API_BASE="https://pms.example.com")
        assert isinstance(build_object_store(settings), S3ObjectStore)
        assert isinstance(build_extractor(settings), TextractDocumentExtractor)
        assert isinstance(build_face_analyzer(settings), RekognitionFaceAnalyzer)
        assert isinstance(build_reservations(settings), HttpReservationDirectory)
        assert missing_configuration(settings) == []

    @pytest.mark.parametrize("builder, setting", [
        (build_object_store, "OBJECT_STORE"),
        (build_extractor, "EXTRACTION_PROVIDER"),
        (build_face_analyzer, "FACE_PROVIDER"),
        (build_reservations, "RESERVATION_SOURCE"),
    ])
    def test_unknown_provider(self, test_settings, builder, setting):
        with pytest.raises(ConfigurationError) as exc:
            builder(configured(test_settings, **{setting: "carrier-pigeon"}))
        assert exc.value.details["setting"] == setting

    def test_missing_configuration(self, test_settings):
        settings = configured(test_settings, OPENAI_API_KEY=None, OBJECT_STORE="s3", STORAGE_BUCKET=None,
                              AWS_REGION=None)
        assert missing_configuration(settings) == ["OPENAI_API_KEY", "AWS_REGION", "STORAGE_BUCKET"]


class TestBuildServices:
    def test_builds_with_local_defaults(self, test_settings):
        services = build_services(configured(test_settings, OPENAI_API_KEY=None))
        assert isinstance(services.sessions.repository, SqliteSessionRepository)

        async def scenario():
            token = (await services.sessions.start())["session_token"]
            return await services.sessions.get_view(token)

        assert run(scenario())["status"] == "started"
