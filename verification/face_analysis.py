"""
Face analyzer adapters.

Both adapters report on percent scales: detection confidence and brightness
in 0-100, pairwise similarity in 0-100.
"""
import asyncio
import base64
import json
import logging
import re
from typing import Any, Dict, Optional, Tuple

import boto3
import cv2
import numpy as np
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from openai import AsyncOpenAI, OpenAIError

from .capabilities import FaceAttributes
from .errors import ConfigurationError, UpstreamServiceError

logger = logging.getLogger(__name__)

FACE_COMPARE_PROMPT = """
You are an identity verification assistant.

You will be given two images:
1. A selfie taken by a hotel guest
2. A photo of the guest's identity document (passport or ID card)

Task:
Determine whether the selfie and the document portrait show the SAME PERSON.

Consider:
- Facial structure
- Eyes, nose, mouth
- Face shape
- Relative age
- Hairline (ignore hairstyle differences)
- Ignore lighting, image quality, or background differences

Return STRICT JSON ONLY.

Format:
{
  "same_person": true/false,
  "confidence": 0.0-1.0
}
"""


def encode_image(image: bytes) -> str:
    return f"data:image/jpeg;base64,{base64.b64encode(image).decode()}"


def safe_json_parse(text: str):
    match = re.search(r"\{.*\}", text or "", re.DOTALL)
    if not match:
        raise ValueError("No JSON found in model output")
    return json.loads(match.group())


def _to_bool(val) -> Optional[bool]:
    if isinstance(val, bool):
        return val
    if isinstance(val, (int, float)):
        return bool(val)
    if val is None:
        return None
    s = str(val).strip().lower()
    if s in ("true", "yes", "y", "1"):
        return True
    if s in ("false", "no", "n", "0"):
        return False
    return None


def _to_conf(val) -> float:
    """Confidence as 0.0-1.0; accepts percentages like 95 or '95%'"""
    if val is None:
        return 0.0
    try:
        v = float(str(val).strip().replace("%", "")) if not isinstance(val, (int, float)) else float(val)
    except ValueError:
        return 0.0
    if v > 1:
        v = v / 100.0
    return max(0.0, min(1.0, v))


class FaceImageChecks:
    """
    OpenCV face detection with image-quality signals.

    Detection confidence is the share of quality checks the face crop passes,
    so it approximates rather than measures detector certainty.
    """

    def __init__(self, min_face_size: int = 80, blur_threshold: float = 60, min_contrast: float = 25):
        self.min_face_size = min_face_size
        self.blur_threshold = blur_threshold
        self.min_contrast = min_contrast
        self.face_cascade = cv2.CascadeClassifier(cv2.data.haarcascades + "haarcascade_frontalface_default.xml")
        self.eye_cascade = cv2.CascadeClassifier(cv2.data.haarcascades + "haarcascade_eye.xml")

    def load_image(self, image: bytes) -> Optional[np.ndarray]:
        buf = np.frombuffer(image, dtype=np.uint8)
        return cv2.imdecode(buf, cv2.IMREAD_COLOR)

    def largest_face(self, gray: np.ndarray) -> Optional[Tuple[int, int, int, int]]:
        faces = self.face_cascade.detectMultiScale(gray, scaleFactor=1.1, minNeighbors=5, minSize=(40, 40))
        if len(faces) == 0:
            return None
        x, y, w, h = max(faces, key=lambda f: f[2] * f[3])
        return int(x), int(y), int(w), int(h)

    def check_size(self, face: np.ndarray) -> bool:
        h, w = face.shape[:2]
        return min(h, w) >= self.min_face_size

    def check_blur(self, face: np.ndarray) -> bool:
        return cv2.Laplacian(face, cv2.CV_64F).var() >= self.blur_threshold

    def check_contrast(self, face: np.ndarray) -> bool:
        return face.std() >= self.min_contrast

    def eyes_open(self, face: np.ndarray) -> bool:
        # Closed eyes are rarely picked up by the eye cascade
        upper = face[: max(1, face.shape[0] * 2 // 3), :]
        eyes = self.eye_cascade.detectMultiScale(upper, scaleFactor=1.1, minNeighbors=6)
        return len(eyes) >= 1

    def analyze(self, image: bytes) -> Optional[FaceAttributes]:
        img = self.load_image(image)
        if img is None:
            return None
        gray = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
        box = self.largest_face(gray)
        if box is None:
            return None

        x, y, w, h = box
        face = gray[y:y + h, x:x + w]
        checks = [self.check_size, self.check_blur, self.check_contrast]
        passed = sum(1 for check in checks if check(face))

        return FaceAttributes(
            confidence=round(100.0 * passed / len(checks), 2),
            eyes_open=self.eyes_open(face),
            brightness=round(float(gray.mean()) / 255.0 * 100.0, 2),
        )


class OpenAIFaceAnalyzer:
    """OpenCV attribute detection plus an LLM pairwise face comparison"""

    def __init__(self, api_key: Optional[str], model: str, timeout: float = 30,
                 checks: Optional[FaceImageChecks] = None):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.checks = checks or FaceImageChecks()
        self._client = None

    @property
    def client(self) -> AsyncOpenAI:
        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY")
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    async def detect(self, image: bytes) -> Optional[FaceAttributes]:
        try:
            return await asyncio.to_thread(self.checks.analyze, image)
        except cv2.error as e:
            raise UpstreamServiceError("face analyzer", e)

    async def compare(self, source: bytes, target: bytes, threshold: float) -> Optional[float]:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": FACE_COMPARE_PROMPT},
                            {"type": "image_url", "image_url": {"url": encode_image(source)}},
                            {"type": "image_url", "image_url": {"url": encode_image(target)}},
                        ],
                    }
                ],
                max_tokens=300,
                temperature=0,
            )
        except OpenAIError as e:
            raise UpstreamServiceError("face analyzer", e)

        try:
            parsed: Dict[str, Any] = safe_json_parse(response.choices[0].message.content)
        except (ValueError, IndexError, AttributeError) as e:
            raise UpstreamServiceError("face analyzer", f"unparseable output: {e}")

        if _to_bool(parsed.get("same_person")) is not True:
            return None
        similarity = _to_conf(parsed.get("confidence")) * 100.0
        return similarity if similarity >= threshold else None


class RekognitionFaceAnalyzer:
    def __init__(self, region: Optional[str], timeout: float = 30):
        self.region = region
        self._client = None
        self._config = Config(connect_timeout=timeout, read_timeout=timeout, retries={"max_attempts": 1})

    def _rekognition(self):
        if not self.region:
            raise ConfigurationError("AWS_REGION")
        if self._client is None:
            self._client = boto3.client("rekognition", region_name=self.region, config=self._config)
        return self._client

    @staticmethod
    def _no_face(e: ClientError) -> bool:
        return e.response.get("Error", {}).get("Code") == "InvalidParameterException"

    async def detect(self, image: bytes) -> Optional[FaceAttributes]:
        rekognition = self._rekognition()
        try:
            res = await asyncio.to_thread(
                rekognition.detect_faces, Image={"Bytes": image}, Attributes=["ALL"]
            )
        except ClientError as e:
            if self._no_face(e):
                return None
            raise UpstreamServiceError("face analyzer", e)
        except BotoCoreError as e:
            raise UpstreamServiceError("face analyzer", e)

        details = res.get("FaceDetails") or []
        if not details:
            return None
        face = details[0]
        return FaceAttributes(
            confidence=float(face.get("Confidence") or 0),
            eyes_open=bool((face.get("EyesOpen") or {}).get("Value")),
            brightness=float((face.get("Quality") or {}).get("Brightness") or 0),
        )

    async def compare(self, source: bytes, target: bytes, threshold: float) -> Optional[float]:
        rekognition = self._rekognition()
        try:
            res = await asyncio.to_thread(
                rekognition.compare_faces,
                SourceImage={"Bytes": source},
                TargetImage={"Bytes": target},
                SimilarityThreshold=threshold,
            )
        except ClientError as e:
            if self._no_face(e):
                logger.info("Face comparison found no face in one of the images")
                return None
            raise UpstreamServiceError("face analyzer", e)
        except BotoCoreError as e:
            raise UpstreamServiceError("face analyzer", e)

        matches = res.get("FaceMatches") or []
        if not matches:
            return None
        return max(float(m.get("Similarity") or 0) for m in matches)
