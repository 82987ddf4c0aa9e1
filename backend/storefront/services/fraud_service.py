# Overview: Rule-based fraud scoring at checkout and the admin fraud analysis aggregate.

"""
Fraud Check

WHY: Orders are paid before they are reviewed. A cheap rule-based score
stored in the order's payment_summary lets admins spot orders worth a
second look without blocking checkout.

Score is the sum of rule weights, capped at 100:
- high order value (>= FRAUD_HIGH_VALUE_CENTS)            +35
- very high order value (>= 2x threshold)                 +20
- large quantity of a single product (>= 20 units)        +15
- split across more than two payments                     +15
- mixed store credit and external rails                   +10
- account created less than a day ago                     +15

severity: high >= 60, medium >= 30, low otherwise
"""

from __future__ import annotations

from collections import Counter
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import Order, User
from ..time_utils import utcnow

BULK_QUANTITY = 20


def score_checkout(user: User, lines: list[dict], total_cents: int, partial_payments: list[dict]) -> dict:
    threshold = current_app.config.get("FRAUD_HIGH_VALUE_CENTS", 50000)
    score = 0
    reasons = []

    if total_cents >= threshold:
        score += 35
        reasons.append("High order value")
        if total_cents >= threshold * 2:
            score += 20
            reasons.append("Very high order value")

    if any(int(line.get("quantity", 0)) >= BULK_QUANTITY for line in lines):
        score += 15
        reasons.append("Bulk quantity of a single item")

    if len(partial_payments) > 2:
        score += 15
        reasons.append("Split across many payments")

    methods = {p.get("method") for p in partial_payments}
    if "store_credit" in methods and len(methods) > 1:
        score += 10
        reasons.append("Store credit mixed with external payment")

    created_at = getattr(user, "created_at", None)
    if created_at is not None:
        created = created_at.replace(tzinfo=None) if created_at.tzinfo else created_at
        if utcnow() - created < timedelta(days=1):
            score += 15
            reasons.append("New account")

    score = min(score, 100)
    if score >= 60:
        severity = "high"
    elif score >= 30:
        severity = "medium"
    else:
        severity = "low"
    return {"score": score, "severity": severity, "reasons": reasons}


def analysis() -> dict:
    """Aggregate fraud results recorded on all orders."""
    severity_counts = {"high": 0, "medium": 0, "low": 0, "unknown": 0}
    reason_counts: Counter = Counter()
    flagged = []
    total_score = 0

    rows = (
        db.session.query(Order, User)
        .outerjoin(User, User.id == Order.user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
    for order, user in rows:
        fraud = order.summary.get("fraud")
        if not isinstance(fraud, dict) or not isinstance(fraud.get("score"), (int, float)):
            continue
        severity = str(fraud.get("severity") or "unknown").lower()
        severity_counts[severity] = severity_counts.get(severity, 0) + 1
        total_score += fraud["score"]
        reasons = fraud.get("reasons") if isinstance(fraud.get("reasons"), list) else []
        for reason in reasons:
            text = str(reason or "").strip()
            if text:
                reason_counts[text] += 1
        flagged.append({
            "id": order.id,
            "username": user.username if user else "Unknown",
            "email": user.email if user else "",
            "total_cents": order.total_cents,
            "method": order.payment_method or "unknown",
            "created_at": order.to_dict(include_items=False)["created_at"],
            "severity": severity,
            "score": fraud["score"],
            "reasons": reasons,
        })

    average = (total_score / len(flagged)) if flagged else 0
    return {
        "stats": {
            "total": len(flagged),
            "average_score": round(average, 1),
            "severity_counts": severity_counts,
            "top_reasons": [{"reason": r, "count": c} for r, c in reason_counts.most_common(5)],
        },
        "orders": flagged,
    }
