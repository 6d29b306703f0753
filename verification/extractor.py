import asyncio
import base64
import json
import logging
import re
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from openai import AsyncOpenAI, OpenAIError

from .capabilities import RawExtraction
from .errors import ConfigurationError, UpstreamServiceError

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """
You are an identity document extraction system.

The image shows a passport, national identity card or similar travel document.
Extract ALL readable printed fields, and the machine-readable zone if present.

IMPORTANT RULES:
- Copy values exactly as printed, do not translate or reformat them
- Dates stay in the format printed on the document
- The MRZ is the block of two lines made of capital letters, digits and '<'
  at the bottom of the data page; copy both lines exactly, separated by a newline
- If a field is not visible, return null
- DO NOT guess or hallucinate

Return STRICT JSON only.

Expected format:
{
  "fields": {
    "document_type": "string or null",
    "surname": "string or null",
    "given_names": "string or null",
    "middle_name": "string or null",
    "full_name": "string or null",
    "nationality": "string or null",
    "sex": "string or null",
    "date_of_birth": "string or null",
    "date_of_issue": "string or null",
    "expiration_date": "string or null",
    "document_number": "string or null"
  },
  "mrz": "string or null"
}
"""


def encode_image(image: bytes) -> str:
    """Encode image bytes as a base64 data URL"""
    return f"data:image/jpeg;base64,{base64.b64encode(image).decode('utf-8')}"


def safe_json_parse(text: str) -> Dict[str, Any]:
    """Safely parse JSON from LLM response"""
    match = re.search(r"\{.*\}", text or "", re.DOTALL)
    if not match:
        raise ValueError("No JSON found in model output")
    return json.loads(match.group())


def to_raw_extraction(parsed: Dict[str, Any]) -> RawExtraction:
    fields = parsed.get("fields") if isinstance(parsed.get("fields"), dict) else {}
    clean = {str(k): str(v) for k, v in fields.items() if v not in (None, "")}
    mrz = parsed.get("mrz")
    return RawExtraction(fields=clean, mrz_text=str(mrz) if mrz else None)


class OpenAIDocumentExtractor:
    """
    Extracts identity fields from a document image using OpenAI Vision.

    Uses the async client so a caller-side timeout cancels the HTTP request.
    """

    def __init__(self, api_key: Optional[str], model: str, timeout: float = 30):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = None

    @property
    def client(self) -> AsyncOpenAI:
        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY")
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    async def extract(self, image: bytes) -> RawExtraction:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": EXTRACTION_PROMPT},
                            {"type": "image_url", "image_url": {"url": encode_image(image)}},
                        ],
                    }
                ],
                max_tokens=800,
                temperature=0,
            )
        except OpenAIError as e:
            raise UpstreamServiceError("document extractor", e)

        try:
            parsed = safe_json_parse(response.choices[0].message.content)
        except (ValueError, IndexError, AttributeError) as e:
            raise UpstreamServiceError("document extractor", f"unparseable output: {e}")
        return to_raw_extraction(parsed)


class TextractDocumentExtractor:
    """
    AWS Textract AnalyzeID.

    boto3 is synchronous: the call runs in a worker thread, which a timeout
    abandons rather than cancels.
    """

    def __init__(self, region: Optional[str], timeout: float = 30):
        self.region = region
        self._client = None
        self._config = Config(connect_timeout=timeout, read_timeout=timeout, retries={"max_attempts": 1})

    def _textract(self):
        if not self.region:
            raise ConfigurationError("AWS_REGION")
        if self._client is None:
            self._client = boto3.client("textract", region_name=self.region, config=self._config)
        return self._client

    async def extract(self, image: bytes) -> RawExtraction:
        textract = self._textract()
        try:
            res = await asyncio.to_thread(
                textract.analyze_id, DocumentPages=[{"Bytes": image}]
            )
        except (ClientError, BotoCoreError) as e:
            raise UpstreamServiceError("document extractor", e)

        documents = res.get("IdentityDocuments") or []
        doc_fields = documents[0].get("IdentityDocumentFields", []) if documents else []

        fields = {}
        for f in doc_fields:
            label = (f.get("Type") or {}).get("Text")
            value = (f.get("ValueDetection") or {}).get("Text")
            if label and value:
                fields[label] = value

        mrz = next((v for k, v in fields.items() if k.strip().upper() == "MRZ_CODE"), None)
        return RawExtraction(fields=fields, mrz_text=mrz)
