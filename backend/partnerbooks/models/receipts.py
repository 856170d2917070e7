from __future__ import annotations

from ..extensions import db
from partnerbooks.time_utils import to_utc_z

class Receipt(db.Model):
    """
    Uploaded receipt file (stored by the blob store collaborator).

    A receipt is uploaded first and linked to a contribution afterwards;
    transaction_id stays NULL until then.
    """
    __tablename__ = "receipts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    filename = db.Column(db.String(255), nullable=False)
    mime_type = db.Column(db.String(128), nullable=False)
    url = db.Column(db.String(1024), nullable=False)
    thumbnail_url = db.Column(db.String(1024), nullable=True)
    public_id = db.Column(db.String(255), nullable=False)

    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "user_id": self.user_id,
            "filename": self.filename,
            "mime_type": self.mime_type,
            "url": self.url,
            "thumbnail_url": self.thumbnail_url,
            "public_id": self.public_id,
            "transaction_id": self.transaction_id,
            "created_at": to_utc_z(self.created_at),
        }
