"""
Opaque local blob storage for receipts and registration documents.

The core only ever stores the returned reference dict inside a registration's
payload. Cleanup after an administrative delete is best-effort: a missing or
undeletable file is logged and never fails the delete.
"""

import re
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import get_blob_dir
from ..util.logging import logger

CATEGORIES = ("images", "documents", "temp")
MAX_FILE_SIZE = 100 * 1024 * 1024  # 100MB

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_filename(filename: str) -> str:
    """Strip directories and anything outside a conservative character set."""
    name = Path(filename or "").name
    name = _UNSAFE_CHARS.sub("_", name).lstrip(".")
    return name or "file"


class LocalBlobStore:
    """Files under ``base_dir/<category>/<uuid><ext>``."""

    def __init__(self, base_dir: str = None):
        self.base_dir = Path(base_dir or get_blob_dir())

    def _resolve(self, file_path: str) -> Path:
        path = Path(file_path)
        if not path.is_absolute():
            path = self.base_dir / path
        resolved = path.resolve()
        if self.base_dir.resolve() not in resolved.parents:
            raise ValueError(f"Blob path escapes storage root: {file_path}")
        return resolved

    def upload(self, data: bytes, filename: str, category: str = "documents",
               uploaded_by: str = None) -> Dict[str, Any]:
        if category not in CATEGORIES:
            raise ValueError(f"Unknown blob category: {category}")
        if len(data) > MAX_FILE_SIZE:
            raise ValueError(f"File too large: {len(data)} bytes (max {MAX_FILE_SIZE})")

        original = sanitize_filename(filename)
        file_id = uuid.uuid4().hex
        stored_name = f"{file_id}{Path(original).suffix.lower()}"
        relative = Path(category) / stored_name

        target = self.base_dir / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

        ref = {
            "id": file_id,
            "originalName": original,
            "fileName": stored_name,
            "filePath": relative.as_posix(),
            "url": f"/uploads/{relative.as_posix()}",
            "fileSize": len(data),
            "uploadedAt": datetime.now().isoformat(),
        }
        if uploaded_by:
            ref["uploadedBy"] = uploaded_by

        logger.log_operation("blobs.upload", "success", {"file_path": ref["filePath"], "size": len(data)})
        return ref

    def exists(self, ref: Dict[str, Any]) -> bool:
        try:
            return self._resolve(ref["filePath"]).is_file()
        except (KeyError, ValueError):
            return False

    def delete(self, ref: Dict[str, Any]) -> bool:
        """Delete a blob. Returns False when it was already gone."""
        path = self._resolve(ref["filePath"])
        if not path.exists():
            return False
        path.unlink()
        return True

    def delete_quietly(self, ref: Dict[str, Any]) -> bool:
        file_path = ref.get("filePath", "<unknown>") if isinstance(ref, dict) else str(ref)
        try:
            deleted = self.delete(ref)
        except (OSError, ValueError, KeyError) as e:
            logger.log_blob_cleanup(file_path, "failed", str(e))
            return False
        logger.log_blob_cleanup(file_path, "success" if deleted else "missing")
        return deleted


def collect_blob_refs(value: Any) -> List[Dict[str, Any]]:
    """Find every blob reference (a dict carrying ``filePath``) nested in a payload."""
    found = []
    if isinstance(value, dict):
        if isinstance(value.get("filePath"), str):
            found.append(value)
        else:
            for item in value.values():
                found.extend(collect_blob_refs(item))
    elif isinstance(value, list):
        for item in value:
            found.extend(collect_blob_refs(item))
    return found


_store: Optional[LocalBlobStore] = None


def get_blob_store() -> LocalBlobStore:
    """Process-wide store, rebuilt when BLOB_DIR changes."""
    global _store
    if _store is None or _store.base_dir != Path(get_blob_dir()):
        _store = LocalBlobStore()
    return _store
