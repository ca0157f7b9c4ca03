"""
Audit logging model.

``AuditLog`` records every data change and authentication event.
"""

from readiness.extensions import db
from readiness.utils import isoformat, utcnow


class AuditLog(db.Model):
    """
    Records all data changes in the application.

    Change details are stored as JSON text.

    ``action_type`` values: CREATE, UPDATE, DELETE, LOGIN, LOGOUT,
    LOGIN_FAILED, plus a few named events such as ``user.signup`` and
    ``user.role_changed``.

    JSON conventions for ``previous_value`` / ``new_value``:
      - CREATE: previous_value is NULL, new_value has full record.
      - UPDATE: both contain only the changed fields.
      - DELETE: previous_value has full record, new_value is NULL.
    """

    __tablename__ = "audit_log"
    __table_args__ = (db.Index("IX_audit_log_created_at", "created_at"),)

    # SQLite only auto-increments INTEGER primary keys.
    id = db.Column(
        db.BigInteger().with_variant(db.Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organization.id"), nullable=True
    )
    action_type = db.Column(db.String(50), nullable=False)
    entity_type = db.Column(db.String(100), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True)
    previous_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    # -- Relationships -----------------------------------------------------
    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "userEmail": self.user.email if self.user else None,
            "organizationId": self.organization_id,
            "actionType": self.action_type,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "previousValue": self.previous_value,
            "newValue": self.new_value,
            "ipAddress": self.ip_address,
            "createdAt": isoformat(self.created_at),
        }

    def __repr__(self) -> str:
        return (
            f"<AuditLog {self.action_type} {self.entity_type}"
            f":{self.entity_id}>"
        )
