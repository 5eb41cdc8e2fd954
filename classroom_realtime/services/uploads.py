# classroom_realtime/services/uploads.py

from __future__ import annotations

import asyncio
import uuid
from pathlib import Path
from typing import List, Sequence

from fastapi import UploadFile
import logging

from classroom_realtime.core.errors import PersistenceFailure
from classroom_realtime.models.models import Attachment

logger = logging.getLogger(__name__)


class AttachmentUploader:
    """
    Stores message attachments on local disk and returns their public URLs.

    Object storage is owned by the main application; this sink keeps the
    realtime service self-contained in development and single-host setups.
    """

    def __init__(self, upload_dir: str, base_url: str = "/uploads") -> None:
        self.upload_dir = Path(upload_dir)
        self.base_url = base_url.rstrip("/")

    async def upload(self, files: Sequence[UploadFile], folder: str) -> List[Attachment]:
        attachments: List[Attachment] = []
        for file in files:
            name = Path(file.filename or "file").name
            stored_name = f"{uuid.uuid4().hex}{Path(name).suffix}"
            target = self.upload_dir / folder / stored_name
            data = await file.read()
            try:
                await asyncio.to_thread(self._write, target, data)
            except OSError as e:
                logger.error("Attachment write failed for %s: %s", name, e)
                raise PersistenceFailure("Attachment could not be stored") from e

            attachments.append(
                Attachment(
                    url=f"{self.base_url}/{folder}/{stored_name}",
                    file_name=name,
                    file_type=file.content_type or "application/octet-stream",
                    public_id=f"{folder}/{stored_name}",
                )
            )
        return attachments

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
