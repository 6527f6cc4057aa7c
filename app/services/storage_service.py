# app/services/storage_service.py
from __future__ import annotations

import logging
import mimetypes
import uuid
from pathlib import Path
from typing import BinaryIO, Optional

from app.core.config import get_settings
from app.core.errors import ValidationError
from app.core.funding_timeline import Invoice

logger = logging.getLogger(__name__)

ALLOWED_INVOICE_TYPES = {
    "application/pdf",
    "image/png",
    "image/jpeg",
    "image/webp",
}


class InvoiceStorage:
    """
    Object storage for contingency invoices.

    Contract: bytes in, {identifier, url} out. This implementation writes to a
    directory served under ``public_base_url``; swap it through the
    ``get_invoice_storage`` dependency for a bucket-backed store.
    """

    def __init__(self, root_dir: str, public_base_url: str, max_bytes: int):
        self.root = Path(root_dir)
        self.public_base_url = public_base_url.rstrip("/")
        self.max_bytes = max_bytes

    def upload(self, *, filename: Optional[str], content_type: Optional[str], data: bytes) -> Invoice:
        ctype = content_type or mimetypes.guess_type(filename or "")[0] or "application/octet-stream"
        if ctype not in ALLOWED_INVOICE_TYPES:
            raise ValidationError(f"Unsupported invoice type {ctype}.", field="invoices")
        if not data:
            raise ValidationError("Invoice file is empty.", field="invoices")
        if len(data) > self.max_bytes:
            raise ValidationError("Invoice file is too large.", field="invoices")

        suffix = Path(filename or "").suffix.lower() or (mimetypes.guess_extension(ctype) or "")
        identifier = f"invoice_{uuid.uuid4().hex}{suffix}"

        self.root.mkdir(parents=True, exist_ok=True)
        (self.root / identifier).write_bytes(data)

        logger.info("[storage] stored invoice id=%s bytes=%s", identifier, len(data))
        return Invoice(identifier=identifier, url=f"{self.public_base_url}/{identifier}")

    def upload_file(
        self, *, filename: Optional[str], content_type: Optional[str], fileobj: BinaryIO
    ) -> Invoice:
        """Reads at most max_bytes + 1 from the stream, enough to tell an oversized upload apart."""
        return self.upload(
            filename=filename, content_type=content_type, data=fileobj.read(self.max_bytes + 1)
        )

    def delete(self, identifier: str) -> None:
        path = self.root / identifier
        if path.parent == self.root and path.exists():
            path.unlink()


def get_invoice_storage() -> InvoiceStorage:
    settings = get_settings()
    return InvoiceStorage(
        root_dir=settings.invoice_upload_dir,
        public_base_url=settings.invoice_public_base_url,
        max_bytes=settings.invoice_max_bytes,
    )
