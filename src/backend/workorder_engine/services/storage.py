"""
Artifact storage for signed work orders (Supabase Storage).
Paths are content-addressed, so re-uploading the same document is idempotent.
"""

import hashlib
import logging
import re
from pathlib import Path
from typing import List, Optional, Tuple

from workorder_engine.config import settings
from workorder_engine.utils.identifiers import DEFAULT_ISSUER, normalize_key_part
from workorder_engine.utils.supabase import get_supabase_client

logger = logging.getLogger(__name__)


class ArtifactStorage:
    """Uploads signed PDFs and region snippets to the signed bucket."""

    def __init__(self, supabase=None, bucket_name: str = None):
        self.supabase = supabase or get_supabase_client()
        self.bucket_name = bucket_name or settings.SIGNED_BUCKET

    def calculate_file_hash(self, file_data: bytes) -> str:
        """SHA-256 hex digest of the file content."""
        return hashlib.sha256(file_data).hexdigest()

    def _sanitize_filename(self, filename: str) -> str:
        """
        Sanitize filename for safe storage.

        Args:
            filename: Original filename

        Returns:
            Safe filename (alphanumeric, hyphens, underscores, dots only)
        """
        safe_name = Path(filename).name
        safe_name = re.sub(r'[^\w\-\.]', '_', safe_name)
        safe_name = re.sub(r'_+', '_', safe_name)
        return safe_name or "document.pdf"

    def generate_file_path(self, issuer_key: Optional[str], file_hash: str, filename: str) -> str:
        """
        Content-addressed storage path.

        Format: {issuer}/{hash[:2]}/{hash}/{safe_filename}
        """
        issuer = normalize_key_part(issuer_key or "") or DEFAULT_ISSUER
        return f"{issuer}/{file_hash[:2]}/{file_hash}/{self._sanitize_filename(filename)}"

    def upload(self, file_data: bytes, file_path: str, mime_type: str = "application/octet-stream") -> bool:
        """
        Upload a file with upsert semantics.

        Returns:
            True if upload succeeded, False otherwise
        """
        try:
            self.supabase.storage.from_(self.bucket_name).upload(
                path=file_path,
                file=file_data,
                file_options={
                    "content-type": mime_type,
                    "upsert": "true"
                }
            )

            logger.debug("Uploaded file to storage", extra={
                "file_path": file_path,
                "size_bytes": len(file_data),
                "mime_type": mime_type
            })
            return True

        except Exception as e:
            logger.error("Error uploading file", extra={
                "file_path": file_path,
                "error": str(e)
            }, exc_info=True)
            return False

    def upload_signed_artifacts(
        self,
        issuer_key: Optional[str],
        file_hash: str,
        filename: str,
        pdf_data: bytes,
        snippet_png: Optional[bytes] = None
    ) -> Tuple[Optional[str], Optional[str]]:
        """
        Upload the signed PDF and, if given, the identifier snippet.

        Either both artifacts are stored or none: a failed snippet upload
        removes the PDF again.

        Returns:
            Tuple of (pdf_path, snippet_path); (None, None) on failure
        """
        pdf_path = self.generate_file_path(issuer_key, file_hash, filename)
        if not self.upload(pdf_data, pdf_path, "application/pdf"):
            return (None, None)

        snippet_path = None
        if snippet_png:
            snippet_path = self.generate_file_path(issuer_key, file_hash, "identifier_region.png")
            if not self.upload(snippet_png, snippet_path, "image/png"):
                self.delete_file(pdf_path)
                return (None, None)

        logger.info("Uploaded signed artifacts", extra={
            "file_hash": file_hash,
            "pdf_path": pdf_path,
            "snippet_path": snippet_path
        })
        return (pdf_path, snippet_path)

    def signed_url(self, file_path: str, expires_in: int = 3600) -> Optional[str]:
        """
        Signed URL for temporary access to a private file.

        Returns:
            Signed URL, or None if failed
        """
        try:
            response = self.supabase.storage.from_(self.bucket_name).create_signed_url(
                path=file_path,
                expires_in=expires_in
            )
            signed_url = response.get('signedURL') or response.get('signedUrl')

            if not signed_url:
                logger.warning("Signed URL generation returned empty", extra={
                    "file_path": file_path
                })
                return None
            return signed_url

        except Exception as e:
            logger.error("Error creating signed URL", extra={
                "file_path": file_path,
                "error": str(e)
            }, exc_info=True)
            return None

    def delete_file(self, file_path: str) -> bool:
        try:
            self.supabase.storage.from_(self.bucket_name).remove([file_path])
            logger.debug("Deleted file from storage", extra={"file_path": file_path})
            return True

        except Exception as e:
            logger.error("Error deleting file", extra={
                "file_path": file_path,
                "error": str(e)
            }, exc_info=True)
            return False

    def delete_files(self, file_paths: List[Optional[str]]) -> None:
        """Remove uploaded artifacts after a failed write."""
        for file_path in file_paths:
            if file_path:
                self.delete_file(file_path)
