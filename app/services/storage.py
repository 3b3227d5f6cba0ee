# services/storage.py - Upload Storage Service
# ============================================================================

import logging
import uuid
from pathlib import Path
from typing import Optional, Tuple
from fastapi import UploadFile
from app.core.config import settings

logger = logging.getLogger(__name__)

class StorageService:
    def __init__(self, upload_dir: Optional[str] = None):
        self.upload_dir = Path(upload_dir or settings.UPLOAD_DIR)
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    async def save_upload(self, file: UploadFile, user_id: int) -> Tuple[str, int]:
        """Write the upload under a per-user directory; returns (path, size in bytes)"""
        file_ext = Path(file.filename).suffix
        unique_filename = f"{uuid.uuid4()}{file_ext}"
        file_path = self.upload_dir / str(user_id) / unique_filename

        file_path.parent.mkdir(parents=True, exist_ok=True)

        content = await file.read()
        with open(file_path, "wb") as buffer:
            buffer.write(content)

        return str(file_path), len(content)

    def delete_upload(self, file_path: str):
        try:
            Path(file_path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"⚠️ Could not remove {file_path}: {e}")
