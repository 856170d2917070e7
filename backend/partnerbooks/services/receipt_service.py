# Overview: Service-layer operations for receipts; upload to the blob store and record metadata.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Receipt
from .blob_service import check_upload, get_blob_store


def upload_receipt(*, org_id: int, user_id: int, file) -> Receipt:
    """
    Store an uploaded receipt file and record it.

    The receipt is linked to a transaction later (receipt_id on create or
    amend).

    Raises:
        BlobStorageError: missing file, disallowed type, or storage failure
    """
    check_upload(file, current_app.config["ALLOWED_UPLOAD_EXTENSIONS"])
    stored = get_blob_store().upload(file, folder="receipts")

    receipt = Receipt(
        org_id=org_id,
        user_id=user_id,
        filename=stored.filename,
        mime_type=stored.mime_type,
        url=stored.url,
        thumbnail_url=stored.thumbnail_url,
        public_id=stored.public_id,
    )
    db.session.add(receipt)
    db.session.commit()
    return receipt
