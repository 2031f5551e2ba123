import logging
from typing import Any, Optional
from urllib.parse import quote

import requests

from config.settings import MetadataSettings
from engine.models import PreviewRecord

logger = logging.getLogger(__name__)

APPWRITE_UNIQUE_ID = "unique()"


class AppwriteMetadataRecorder:
    """Creates one Appwrite document per published preview.

    Document fields keep the collection's existing names: ``song_id``,
    ``audio_url`` and ``aws_url`` (the video address).
    """

    def __init__(self, settings: MetadataSettings, session: Optional[requests.Session] = None) -> None:
        missing = [
            name
            for name, value in (
                ("APPWRITE_ENDPOINT", settings.appwrite_endpoint),
                ("APPWRITE_PROJECT_ID", settings.appwrite_project_id),
                ("APPWRITE_KEY", settings.appwrite_key),
                ("APPWRITE_DATABASE_ID", settings.appwrite_database_id),
                ("APPWRITE_COLLECTION_ID", settings.appwrite_collection_id),
            )
            if not value
        ]
        if missing:
            raise ValueError(f"Appwrite settings missing: {', '.join(missing)}")
        self.endpoint = str(settings.appwrite_endpoint).rstrip("/")
        self.timeout_seconds = settings.timeout_seconds
        self._project_id = settings.appwrite_project_id
        self._api_key = settings.appwrite_key
        self._database_id = settings.appwrite_database_id
        self._collection_id = settings.appwrite_collection_id
        self._session = session or requests.Session()

    def documents_url(self) -> str:
        return (
            f"{self.endpoint}/databases/{quote(str(self._database_id), safe='')}"
            f"/collections/{quote(str(self._collection_id), safe='')}/documents"
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Appwrite-Project": str(self._project_id),
            "X-Appwrite-Key": str(self._api_key),
        }

    @staticmethod
    def build_payload(record: PreviewRecord) -> dict[str, Any]:
        return {
            "documentId": APPWRITE_UNIQUE_ID,
            "data": {
                "song_id": record.external_id,
                "audio_url": record.audio_url,
                "aws_url": record.video_url,
            },
        }

    def record(self, record: PreviewRecord) -> bool:
        try:
            resp = self._session.post(
                self.documents_url(),
                json=self.build_payload(record),
                headers=self._headers(),
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            logger.warning("[APPWRITE] save failed external_id=%s error=%s", record.external_id, exc)
            return False

        status = int(resp.status_code)
        if status >= 300:
            logger.warning(
                "[APPWRITE] save rejected external_id=%s status=%s body=%s",
                record.external_id,
                status,
                (resp.text or "")[:500],
            )
            return False

        document_id = None
        try:
            payload = resp.json() if resp.content else {}
            if isinstance(payload, dict):
                document_id = payload.get("$id")
        except ValueError:
            logger.debug("[APPWRITE] response body is not JSON external_id=%s", record.external_id)
        logger.info("[APPWRITE] saved external_id=%s document_id=%s", record.external_id, document_id)
        return True
