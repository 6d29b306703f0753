from pydantic_settings import BaseSettings
from typing import Dict, List, Optional

class Settings(BaseSettings):
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["*"]

    # Session repository and usage recording (SQLite)
    DATABASE_PATH: str = "data/sessions.db"

    # Object storage: "local" or "s3"
    OBJECT_STORE: str = "local"
    LOCAL_STORAGE_DIR: str = "data/objects"
    STORAGE_BUCKET: Optional[str] = None
    STORAGE_PREFIX: str = "sessions"
    AWS_REGION: Optional[str] = None

    # Providers: "openai" or "textract" / "rekognition"
    EXTRACTION_PROVIDER: str = "openai"
    FACE_PROVIDER: str = "openai"

    # OpenAI Configuration
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4.1-mini"
    # Model used specifically for face similarity scoring
    FACE_MODEL: str = "gpt-4.1-mini"

    # Timeouts (seconds)
    EXTRACTION_TIMEOUT_SECONDS: float = 15
    PROVIDER_TIMEOUT_SECONDS: float = 30

    # Uploads below this size are treated as truncated
    MIN_IMAGE_BYTES: int = 1000

    # Reservation directory: "file" or "http"
    RESERVATION_SOURCE: str = "file"
    RESERVATIONS_FILE: str = "data/reservations.json"
    RESERVATIONS_API_BASE: Optional[str] = None
    RESERVATIONS_API_KEY: Optional[str] = None

    # Cost bookkeeping
    COST_LIVENESS_USD: float = 0.001
    COST_FACE_COMPARE_USD: float = 0.001
    COST_VERIFICATION_USD: float = 0.052

    class Config:
        env_file = ".env"

settings = Settings()

# OCR label aliases, tried in order. Labels are compared after lower-casing
# and collapsing whitespace to "_".
FIELD_ALIASES: Dict[str, List[str]] = {
    "first_name": ["first_name", "given_name", "given_names"],
    "middle_name": ["middle_name"],
    "last_name": ["last_name", "surname", "family_name"],
    "full_name": ["name", "full_name"],
    "date_of_birth": ["date_of_birth", "dob", "birth_date"],
    "date_of_issue": ["date_of_issue", "issue_date"],
    "expiration_date": ["expiration_date", "expiry_date", "date_of_expiry"],
    "nationality": ["nationality", "country"],
    "sex": ["sex", "gender"],
    "document_number": [
        "document_number",
        "passport_number",
        "id_number",
        "identity_document_number",
        "personal_number",
    ],
    "id_type": ["id_type", "document_type"],
    "mrz": ["mrz_code", "mrz"],
}
