"""
Client for the file and data-dictionary store.

The store serves JSON over HTTP with bearer-token auth:
    GET {base}/list-files                 -> {"files": [{"id", "filename", ...}]}
    GET {base}/get-file?id=...            -> {"filename", "mimetype", "fileData": base64}
    GET {base}/list-data-dictionaries     -> {"dictionaries": [{"id", "name", ...}]}
    GET {base}/get-data-dictionary?id=... -> {"id", "name", "rules_json", "source_headers_json"}
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import requests

from sheet_validator.config import Settings, load_settings
from sheet_validator.errors import SourceError
from sheet_validator.rules import DataDictionary

logger = logging.getLogger(__name__)

# base64 inflates payloads by a third; leave room for the JSON envelope.
ENVELOPE_FACTOR = 1.5


@dataclass(frozen=True)
class RemoteFile:
    filename: str
    mimetype: Optional[str]
    content: bytes


class StoreClient:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: int = 60,
        max_file_bytes: int = 100 * 1024 * 1024,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise SourceError("No store URL configured. Set SHEET_VALIDATOR_API_URL or pass --api-url.")
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.max_file_bytes = max_file_bytes
        self.http = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "StoreClient":
        settings = settings or load_settings()
        return cls(
            settings.api_url or "",
            token=settings.api_token,
            timeout=settings.timeout,
            max_file_bytes=settings.max_file_bytes,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get_json(self, endpoint: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        url = f"{self.base_url}/{endpoint}"
        limit = int(self.max_file_bytes * ENVELOPE_FACTOR) + 1024
        try:
            response = self.http.get(url, params=params, headers=self._headers(), timeout=self.timeout, stream=True)
        except requests.RequestException as exc:
            raise SourceError(f"Could not reach {url}: {exc}") from exc

        try:
            if response.status_code >= 400:
                raise SourceError(
                    f"{endpoint} failed with HTTP {response.status_code}: {_error_message(response)}",
                    status_code=response.status_code,
                )
            chunks: list[bytes] = []
            downloaded = 0
            for chunk in response.iter_content(chunk_size=1024 * 1024):
                if not chunk:
                    continue
                downloaded += len(chunk)
                if downloaded > limit:
                    raise SourceError(f"Response from {endpoint} is larger than the configured limit.")
                chunks.append(chunk)
        except requests.RequestException as exc:
            raise SourceError(f"Could not read response from {url}: {exc}") from exc
        finally:
            response.close()

        try:
            payload = json.loads(b"".join(chunks).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SourceError(f"{endpoint} returned invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise SourceError(f"{endpoint} returned an unexpected payload.")
        return payload

    def list_files(self) -> list[dict[str, Any]]:
        files = self._get_json("list-files").get("files") or []
        return [item for item in files if isinstance(item, dict)]

    def list_dictionaries(self) -> list[dict[str, Any]]:
        dictionaries = self._get_json("list-data-dictionaries").get("dictionaries") or []
        return [item for item in dictionaries if isinstance(item, dict)]

    def fetch_file(self, file_id: str) -> RemoteFile:
        payload = self._get_json("get-file", {"id": file_id})
        encoded = payload.get("fileData")
        if not isinstance(encoded, str):
            raise SourceError(f"File {file_id} has no content.")
        try:
            content = base64.b64decode(encoded, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise SourceError(f"File {file_id} content is not valid base64: {exc}") from exc
        if len(content) > self.max_file_bytes:
            raise SourceError(f"File {file_id} is larger than {self.max_file_bytes // (1024 * 1024)} MB.")
        filename = str(payload.get("filename") or f"file-{file_id}")
        logger.info("Fetched %s (%d bytes) from the store", filename, len(content))
        return RemoteFile(filename=filename, mimetype=payload.get("mimetype"), content=content)

    def fetch_dictionary(self, dictionary_id: str) -> DataDictionary:
        """Transport failures raise SourceError; a malformed rule payload raises RuleSetError."""
        payload = self._get_json("get-data-dictionary", {"id": dictionary_id})
        dictionary = DataDictionary.from_payload(payload)
        if dictionary.dictionary_id is None:
            dictionary.dictionary_id = str(dictionary_id)
        return dictionary


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.reason or "request failed"
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return response.reason or "request failed"
