"""
Tests for session start, consent and guest info.
"""
import pytest

from conftest import run
from verification.errors import ReservationNotFoundError, SessionNotFoundError, ValidationError
from verification.models import SessionStatus, Step


class TestStart:
    def test_start_creates_session(self, make_services, fakes):
        async def scenario():
            services = make_services()
            result = await services.sessions.start()
            session = await fakes["repository"].get(result["session_token"])
            return result, session

        result, session = run(scenario())
        assert result["verify_url"] == f"/verify/{result['session_token']}"
        assert len(result["session_token"]) == 12
        assert session.status == SessionStatus.STARTED
        assert session.current_step == Step.WELCOME
        assert session.expected_guest_count == 1
        assert session.verified_guest_count == 0

    def test_tokens_are_unique(self, make_services):
        async def scenario():
            services = make_services()
            return {(await services.sessions.start())["session_token"] for _ in range(20)}

        assert len(run(scenario())) == 20


class TestGetView:
    def test_view_of_new_session(self, make_services):
        async def scenario():
            services = make_services()
            token = (await services.sessions.start())["session_token"]
            return await services.sessions.get_view(token)

        view = run(scenario())
        assert view["current_step"] == "welcome"
        assert view["document_uploaded"] is False
        assert view["selfie_uploaded"] is False
        assert view["extraction"] == "none"
        assert view["expected_guest_count"] == 1
        assert view["verified_guest_count"] == 0
        assert view["requires_additional_guest"] is True
        assert view["remaining_guest_verifications"] == 1

    def test_unknown_token(self, make_services):
        with pytest.raises(SessionNotFoundError):
            run(make_services().sessions.get_view("missing"))

    def test_missing_token(self, make_services):
        with pytest.raises(ValidationError):
            run(make_services().sessions.get_view(""))


class TestLogConsent:
    def test_defaults(self, make_services, fakes):
        async def scenario():
            services = make_services()
            token = (await services.sessions.start())["session_token"]
            await services.sessions.log_consent(token, "yes")
            return await fakes["repository"].get(token)

        session = run(scenario())
        assert session.consent_given is True
        assert session.consent_locale == "en"
        assert session.consent_time
        assert session.status == SessionStatus.CONSENT_LOGGED
        assert session.current_step == Step.WELCOME

    def test_explicit_values(self, make_services, fakes):
        async def scenario():
            services = make_services()
            token = (await services.sessions.start())["session_token"]
            await services.sessions.log_consent(token, True, "2026-10-18T09:00:00Z", "de")
            return await fakes["repository"].get(token)

        session = run(scenario())
        assert session.consent_time == "2026-10-18T09:00:00Z"
        assert session.consent_locale == "de"

    def test_unknown_session(self, make_services):
        with pytest.raises(SessionNotFoundError):
            run(make_services().sessions.log_consent("missing", True))


class TestUpdateGuest:
    def _update(self, make_services, fakes, name, reference, override=None):
        async def scenario():
            services = make_services()
            token = (await services.sessions.start())["session_token"]
            try:
                result = await services.sessions.update_guest(token, name, reference, override)
            except Exception as e:
                result = e
            return result, await fakes["repository"].get(token)
        return run(scenario())

    def test_expected_count_from_reservation(self, make_services, fakes):
        result, session = self._update(make_services, fakes, "John Smith", "RES-2002")
        assert result == {"expected": 2, "verified": 0, "requires_additional_guest": True, "remaining": 2}
        assert session.status == SessionStatus.GUEST_INFO_SAVED
        assert session.current_step == Step.DOCUMENT
        assert session.guest_name == "John Smith"

    def test_lookup_uses_normalised_values(self, make_services, fakes):
        result, _ = self._update(make_services, fakes, "  anna   ERIKSSON. ", "res 1001")
        assert result["expected"] == 1
        assert fakes["reservations"].lookups == [("anna eriksson", "RES1001")]

    def test_manual_override(self, make_services, fakes):
        result, _ = self._update(make_services, fakes, "John Smith", "RES-2002", override=4)
        assert result["expected"] == 4

    def test_large_party_is_clamped(self, make_services, fakes):
        result, _ = self._update(make_services, fakes, "Big Group", "RES-3003")
        assert result["expected"] == 10

    def test_unknown_reservation_is_rejected(self, make_services, fakes):
        """A reference missing from the directory fails closed and leaves the session untouched."""
        result, session = self._update(make_services, fakes, "John Smith", "RES-9999")
        assert isinstance(result, ReservationNotFoundError)
        assert result.status_code == 403
        assert session.status == SessionStatus.STARTED
        assert session.current_step == Step.WELCOME
        assert session.guest_name is None
        assert session.reservation_reference is None

    def test_missing_fields(self, make_services, fakes):
        result, _ = self._update(make_services, fakes, "John Smith", "  ")
        assert isinstance(result, ValidationError)
        assert result.error_code == "MISSING_FIELDS"
        assert result.details["missing"] == ["reservation_reference"]
        assert fakes["reservations"].lookups == []
