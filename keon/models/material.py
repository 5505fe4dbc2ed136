"""
KEON Task Manager
Material request domain model.

Models:
    - MaterialRequestLine: one requested item of a material request
"""

from datetime import datetime, timezone

from keon.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ORDER_STATE_AWAITING_VALIDATION = "En attente validation"
ORDER_STATE_QUOTE_REQUESTED = "Demande de devis"

ORDER_STATES = (
    ORDER_STATE_AWAITING_VALIDATION,
    ORDER_STATE_QUOTE_REQUESTED,
    "Bon de commande envoyé",
    "AR reçu",
    "Commande livrée",
    "Commande distribuée",
)

# Checklist of the fulfilment task created when a material request is validated.
FULFILMENT_CHECKLIST = (
    "Demande de devis",
    "Bon de commande envoyé",
    "AR reçu",
    "Commande livrée",
    "Commande distribuée",
)


class MaterialRequestLine(db.Model):
    __tablename__ = "material_request_lines"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    ref = db.Column(db.String(100), nullable=True, comment="Supplier / catalogue reference")
    designation = db.Column(db.String(300), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    order_state = db.Column(
        db.String(50), nullable=False, default=ORDER_STATE_AWAITING_VALIDATION,
    )

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "request_id": self.request_id,
            "ref": self.ref,
            "designation": self.designation,
            "quantity": self.quantity,
            "order_state": self.order_state,
        }

    def __repr__(self):
        return f"<MaterialRequestLine {self.id}: {self.designation[:40]} [{self.order_state}]>"
