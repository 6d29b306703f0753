"""
Tests for reservation lookups.
"""
import json

import pytest
import requests

from conftest import run
from verification import reservations
from verification.errors import ConfigurationError, UpstreamServiceError
from verification.reservations import (
    FileReservationDirectory,
    HttpReservationDirectory,
    normalize_guest_name,
    normalize_reservation_reference,
)


class TestNormalization:
    @pytest.mark.parametrize("raw, expected", [
        ("Anna Eriksson", "anna eriksson"),
        ("  ANNA   eriksson ", "anna eriksson"),
        ("O'Brien, Sean.", "obrien sean"),
        (None, ""),
    ])
    def test_guest_name(self, raw, expected):
        assert normalize_guest_name(raw) == expected

    @pytest.mark.parametrize("raw, expected", [
        ("res-1001", "RES1001"),
        (" RES 1001 ", "RES1001"),
        ("", ""),
    ])
    def test_reservation_reference(self, raw, expected):
        assert normalize_reservation_reference(raw) == expected


class TestFileReservationDirectory:
    def _write(self, path, rows):
        path.write_text(json.dumps(rows), encoding="utf-8")

    def test_lookup(self, tmp_path):
        path = tmp_path / "reservations.json"
        self._write(path, [
            {"guest_name": "John Smith", "reservation_reference": "RES-2002", "adults": 2},
            {"guest_name": "No Adults", "reservation_reference": "RES-0000"},
            {"guest_name": "Broken", "reservation_reference": "RES-BAD", "adults": "many"},
            "not a row",
        ])
        directory = FileReservationDirectory(str(path))

        assert run(directory.lookup("john smith", "RES2002")).adults == 2
        assert run(directory.lookup("no adults", "RES0000")).adults == 1
        assert run(directory.lookup("broken", "RESBAD")) is None
        assert run(directory.lookup("john smith", "RES9999")) is None

    def test_missing_file(self, tmp_path):
        directory = FileReservationDirectory(str(tmp_path / "absent.json"))
        assert run(directory.lookup("john smith", "RES2002")) is None

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "reservations.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(UpstreamServiceError):
            run(FileReservationDirectory(str(path)).lookup("a", "B"))


class FakeResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self.payload = payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class TestHttpReservationDirectory:
    def _patch(self, monkeypatch, response):
        calls = []

        def fake_get(url, **kwargs):
            calls.append((url, kwargs))
            if isinstance(response, Exception):
                raise response
            return response

        monkeypatch.setattr(reservations.requests, "get", fake_get)
        return calls

    def test_found(self, monkeypatch):
        calls = self._patch(monkeypatch, FakeResponse(200, {"adults": 3}))
        directory = HttpReservationDirectory("https://pms.example.com/", "key-1", timeout=5)

        assert run(directory.lookup("john smith", "RES2002")).adults == 3
        url, kwargs = calls[0]
        assert url == "https://pms.example.com/reservations/lookup"
        assert kwargs["params"] == {"name": "john smith", "reference": "RES2002"}
        assert kwargs["headers"] == {"Authorization": "Bearer key-1"}
        assert kwargs["timeout"] == 5

    def test_not_found(self, monkeypatch):
        self._patch(monkeypatch, FakeResponse(404))
        assert run(HttpReservationDirectory("https://pms.example.com").lookup("a", "B")) is None

    def test_server_error(self, monkeypatch):
        self._patch(monkeypatch, FakeResponse(500))
        with pytest.raises(UpstreamServiceError):
            run(HttpReservationDirectory("https://pms.example.com").lookup("a", "B"))

    def test_connection_error(self, monkeypatch):
        self._patch(monkeypatch, requests.ConnectionError("refused"))
        with pytest.raises(UpstreamServiceError):
            run(HttpReservationDirectory("https://pms.example.com").lookup("a", "B"))

    def test_not_configured(self):
        with pytest.raises(ConfigurationError):
            run(HttpReservationDirectory(None).lookup("a", "B"))
