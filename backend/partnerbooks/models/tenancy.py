from __future__ import annotations

from ..extensions import db
from partnerbooks.time_utils import to_utc_z


class Organization(db.Model):
    """
    A set of books: the tenant that owns partners, ledger rows, cost
    entries, sales and users.

    Every service query filters on org_id; a row from another organization
    is reported as not found, never as forbidden.
    Deactivating an organization ends its sessions and blocks login.
    """
    __tablename__ = "organizations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)  # optional CLI handle
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Organization id={self.id} code={self.code!r} active={self.is_active}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
