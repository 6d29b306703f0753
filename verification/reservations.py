import asyncio
import json
import logging
import os
import re
import string
from typing import Dict, Optional, Tuple

import requests

from .capabilities import Reservation
from .errors import ConfigurationError, UpstreamServiceError

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(f"[{re.escape(string.punctuation)}]")


def normalize_guest_name(name: Optional[str]) -> str:
    """Lowercase, strip punctuation, collapse whitespace"""
    if not name:
        return ""
    text = _PUNCTUATION.sub("", str(name).lower())
    return re.sub(r"\s+", " ", text).strip()


def normalize_reservation_reference(reference: Optional[str]) -> str:
    """Uppercase, strip whitespace and hyphens"""
    if not reference:
        return ""
    return re.sub(r"[\s-]+", "", str(reference).upper())


class FileReservationDirectory:
    """
    Reservations from a JSON list of
    {"guest_name": ..., "reservation_reference": ..., "adults": n}.

    The file is re-read when its modification time changes.
    """

    def __init__(self, path: str):
        self.path = path
        self._index: Dict[Tuple[str, str], int] = {}
        self._mtime: Optional[float] = None

    def _load(self) -> Dict[Tuple[str, str], int]:
        try:
            mtime = os.path.getmtime(self.path)
        except OSError:
            logger.warning("Reservations file %s not found; every lookup will fail", self.path)
            self._index, self._mtime = {}, None
            return self._index
        if mtime == self._mtime:
            return self._index

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                rows = json.load(f)
        except (OSError, ValueError) as e:
            raise UpstreamServiceError("reservation directory", e)

        index = {}
        for row in rows if isinstance(rows, list) else []:
            if not isinstance(row, dict):
                continue
            key = (
                normalize_guest_name(row.get("guest_name")),
                normalize_reservation_reference(row.get("reservation_reference")),
            )
            if all(key):
                try:
                    index[key] = int(row.get("adults") or 1)
                except (TypeError, ValueError):
                    logger.warning("Skipping reservation %s with invalid adults value", key[1])
        self._index, self._mtime = index, mtime
        logger.info("Loaded %d reservations from %s", len(index), self.path)
        return index

    async def lookup(self, guest_name: str, reservation_reference: str) -> Optional[Reservation]:
        index = await asyncio.to_thread(self._load)
        adults = index.get((guest_name, reservation_reference))
        return Reservation(adults=adults) if adults is not None else None


class HttpReservationDirectory:
    """Reservation service: GET <base>/reservations/lookup?name=&reference="""

    def __init__(self, base_url: Optional[str], api_key: Optional[str] = None, timeout: float = 30):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _get(self, guest_name: str, reservation_reference: str) -> Optional[Reservation]:
        if not self.base_url:
            raise ConfigurationError("RESERVATIONS_API_BASE")
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            response = requests.get(
                f"{self.base_url}/reservations/lookup",
                params={"name": guest_name, "reference": reservation_reference},
                headers=headers,
                timeout=self.timeout,
            )
            if response.status_code == 404:
                return None
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise UpstreamServiceError("reservation directory", e)

        if not isinstance(data, dict) or data.get("adults") is None:
            return None
        try:
            return Reservation(adults=int(data["adults"]))
        except (TypeError, ValueError) as e:
            raise UpstreamServiceError("reservation directory", f"invalid adults value: {e}")

    async def lookup(self, guest_name: str, reservation_reference: str) -> Optional[Reservation]:
        return await asyncio.to_thread(self._get, guest_name, reservation_reference)
