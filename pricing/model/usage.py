# --- pricing/model/usage.py ---

from datetime import datetime
from ..extensions import db

class UsageCounter(db.Model):
    __tablename__ = "usage_counter"
    __table_args__ = (db.UniqueConstraint("kind", "construct_id", name="uq_usage_counter_construct"),)

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(16), nullable=False, index=True)        # "promotion" | "coupon"
    construct_id = db.Column(db.String(64), nullable=False, index=True)
    usage_count = db.Column(db.Integer, nullable=False, default=0)
    usage_limit = db.Column(db.Integer, nullable=False, default=0)     # 0 = unlimited
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def as_api(self):
        return {
            "kind": self.kind,
            "construct_id": self.construct_id,
            "usage_count": self.usage_count,
            "usage_limit": self.usage_limit,
        }


class Redemption(db.Model):
    __tablename__ = "redemption"

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(16), nullable=False)
    construct_id = db.Column(db.String(64), nullable=False)
    customer_id = db.Column(db.String(64), nullable=True, index=True)
    order_id = db.Column(db.String(64), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class CompletedOrder(db.Model):
    """Idempotency record: one row per completed order id."""
    __tablename__ = "completed_order"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    customer_id = db.Column(db.String(64), nullable=True, index=True)
    # ["coupon:SAVE20", "promotion:p1", ...]
    applied_json = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
