import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from verification import __version__
from verification.actions import ActionDispatcher
from verification.errors import ValidationError, VerificationError
from verification.services import Services, build_services

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the application. Services are constructed from settings at startup
    unless a prepared service graph is passed in.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.services = services or build_services(settings)
        app.state.dispatcher = ActionDispatcher(app.state.services)
        logger.info("Guest verification service started")
        try:
            yield
        finally:
            await app.state.services.close()

    app = FastAPI(
        title="Guest Verification Service",
        description="Guest identity verification: document extraction, face match and multi-guest quorum",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(VerificationError)
    async def verification_error_handler(request: Request, exc: VerificationError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Unknown server error", "error_code": "INTERNAL_ERROR", "details": {}},
        )

    # ------------------------
    # Verification API
    # ------------------------
    @app.post("/api/verify")
    async def verify(request: Request):
        """
        Single action endpoint: start, get_session, log_consent, update_guest,
        upload_document, verify_face.
        """
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise ValidationError("Request body must be valid JSON", "INVALID_REQUEST")
        return await request.app.state.dispatcher.handle(body)

    # ------------------------
    # Health Check
    # ------------------------
    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": "guest-verification",
            "version": __version__,
        }

    return app


app = create_app()


# ------------------------
# Local Dev Entry
# ------------------------
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
