"""
Action surface: one request body, dispatched on its "action" field.

Field names accept both the short forms and the names used by the legacy
web client (session_token, image_data, selfie_data, booking_ref, room_number).
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Type, TypeVar

import pydantic
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .errors import ValidationError
from .services import Services

logger = logging.getLogger(__name__)

RequestT = TypeVar("RequestT", bound=BaseModel)


class ActionRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")


class TokenRequest(ActionRequest):
    token: str = Field(min_length=1, validation_alias=AliasChoices("token", "session_token"))


class LogConsentRequest(TokenRequest):
    consent_given: bool = False
    consent_time: Optional[str] = None
    consent_locale: Optional[str] = None


class UpdateGuestRequest(TokenRequest):
    guest_name: Optional[str] = None
    reservation_reference: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("reservation_reference", "booking_ref", "room_number"),
    )
    expected_guest_count: Optional[int] = None


class UploadDocumentRequest(TokenRequest):
    image: Optional[Any] = Field(default=None, validation_alias=AliasChoices("image_bytes", "image_data", "image"))
    guest_name: Optional[str] = None
    reservation_reference: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("reservation_reference", "booking_ref", "room_number"),
    )


class VerifyFaceRequest(TokenRequest):
    selfie: Optional[Any] = Field(default=None, validation_alias=AliasChoices("selfie_bytes", "selfie_data", "selfie"))


def parse_request(model: Type[RequestT], body: Dict[str, Any]) -> RequestT:
    try:
        return model.model_validate(body)
    except pydantic.ValidationError as e:
        fields = [".".join(str(part) for part in err["loc"]) for err in e.errors()]
        raise ValidationError("Missing or invalid fields", "MISSING_FIELDS", details={"fields": fields})


class ActionDispatcher:
    def __init__(self, services: Services):
        self.services = services
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]] = {
            "start": self.start,
            "get_session": self.get_session,
            "log_consent": self.log_consent,
            "update_guest": self.update_guest,
            "upload_document": self.upload_document,
            "verify_face": self.verify_face,
        }

    @property
    def actions(self):
        return sorted(self._handlers)

    async def handle(self, body: Any) -> Dict[str, Any]:
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object", "INVALID_REQUEST")
        action = body.get("action")
        handler = self._handlers.get(action) if isinstance(action, str) else None
        if handler is None:
            raise ValidationError("Invalid action", "INVALID_ACTION",
                                  details={"action": action, "supported": self.actions})
        return await handler(body)

    async def start(self, body: Dict[str, Any]) -> Dict[str, Any]:
        result = await self.services.sessions.start()
        return {"success": True, "token": result["session_token"], **result}

    async def get_session(self, body: Dict[str, Any]) -> Dict[str, Any]:
        req = parse_request(TokenRequest, body)
        return {"success": True, "session": await self.services.sessions.get_view(req.token)}

    async def log_consent(self, body: Dict[str, Any]) -> Dict[str, Any]:
        req = parse_request(LogConsentRequest, body)
        await self.services.sessions.log_consent(req.token, req.consent_given, req.consent_time,
                                                 req.consent_locale)
        return {"success": True, "message": "Consent logged successfully"}

    async def update_guest(self, body: Dict[str, Any]) -> Dict[str, Any]:
        req = parse_request(UpdateGuestRequest, body)
        result = await self.services.sessions.update_guest(
            req.token, req.guest_name, req.reservation_reference, req.expected_guest_count
        )
        return {"success": True, **result}

    async def upload_document(self, body: Dict[str, Any]) -> Dict[str, Any]:
        req = parse_request(UploadDocumentRequest, body)
        result = await self.services.documents.ingest(
            req.token, req.image, req.guest_name, req.reservation_reference
        )
        return {"success": True, **result}

    async def verify_face(self, body: Dict[str, Any]) -> Dict[str, Any]:
        req = parse_request(VerifyFaceRequest, body)
        decision = await self.services.faces.verify(req.token, req.selfie)
        return {"success": True, **decision.to_response()}
