"""
Material discrepancy detection.

Compares purchased, delivered and used quantities of a material and
classifies the gap:

    variance  = shortfall between purchased and delivered
    loss      = delivered stock not accounted for as used
    wastage   = purchased stock not used (percentage)

Functions:
    - check_material_discrepancies: pure metric/alert/severity computation
    - record_discrepancy:           store a Discrepancy row when alerts fire
    - project_discrepancy_summary:  counts by severity for a project
"""

import logging

from flask import current_app, has_app_context

from buildtrack.models import db
from buildtrack.models.material import Discrepancy, Material
from buildtrack.services.calculations import calculate_wastage

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS = {
    "variance_percentage": 5,
    "variance_amount": 100,
    "loss_percentage": 10,
    "loss_amount": 50,
    "wastage_percentage": 15,
}

CRITICAL_COST = 10000
HIGH_COST = 5000
MEDIUM_COST = 1000


def configured_thresholds() -> dict:
    """DEFAULT_THRESHOLDS overlaid with DISCREPANCY_THRESHOLDS from app config."""
    thresholds = dict(DEFAULT_THRESHOLDS)
    if has_app_context():
        thresholds.update(current_app.config.get("DISCREPANCY_THRESHOLDS") or {})
    return thresholds


# ── Metric primitives ────────────────────────────────────────────────────────


def _clamp_pct(value: float) -> float:
    return max(0.0, min(100.0, round(value, 2)))


def variance(purchased: float, delivered: float) -> float:
    return max(0.0, purchased - delivered)


def variance_percentage(purchased: float, delivered: float) -> float:
    if purchased == 0:
        return 0.0
    return _clamp_pct((purchased - delivered) / purchased * 100)


def loss(delivered: float, used: float) -> float:
    return max(0.0, delivered - used)


def loss_percentage(delivered: float, used: float) -> float:
    if delivered == 0:
        return 0.0
    return _clamp_pct((delivered - used) / delivered * 100)


def _excessive(amount: float, pct: float, pct_threshold: float, amount_threshold: float) -> bool:
    if pct > pct_threshold:
        return True
    return amount_threshold > 0 and amount > amount_threshold


def severity_level(has_variance: bool, has_loss: bool, has_wastage: bool, total_cost: float) -> str:
    """Classify a discrepancy.

    NONE      no alert raised
    CRITICAL  variance and loss together, or cost above 10 000
    HIGH      variance, or cost above 5 000
    MEDIUM    loss/wastage with cost above 1 000
    LOW       everything else
    """
    if not (has_variance or has_loss or has_wastage):
        return "NONE"
    if (has_variance and has_loss) or total_cost > CRITICAL_COST:
        return "CRITICAL"
    if has_variance or total_cost > HIGH_COST:
        return "HIGH"
    if (has_loss or has_wastage) and total_cost > MEDIUM_COST:
        return "MEDIUM"
    return "LOW"


def check_material_discrepancies(material, thresholds: dict | None = None) -> dict:
    """Compute discrepancy metrics, alerts and severity for a material.

    Args:
        material: Material instance or dict with quantity_purchased,
                  quantity_delivered, quantity_used, unit_cost.
        thresholds: Partial overrides of DEFAULT_THRESHOLDS.

    Returns:
        {"material_id", "metrics": {...}, "alerts": {...}, "severity": str}
    """
    thresh = configured_thresholds()
    thresh.update(thresholds or {})

    get = material.get if isinstance(material, dict) else (lambda k: getattr(material, k, None))
    purchased = float(get("quantity_purchased") or 0)
    delivered = float(get("quantity_delivered") or 0)
    used = float(get("quantity_used") or 0)
    unit_cost = float(get("unit_cost") or 0)

    var = variance(purchased, delivered)
    var_pct = variance_percentage(purchased, delivered)
    var_cost = round(var * unit_cost, 2)
    lost = loss(delivered, used)
    lost_pct = loss_percentage(delivered, used)
    lost_cost = round(lost * unit_cost, 2)
    wastage = calculate_wastage(purchased, delivered, used)
    total_cost = round(var_cost + lost_cost, 2)

    has_variance = _excessive(
        var, var_pct, thresh["variance_percentage"], thresh["variance_amount"],
    )
    has_loss = _excessive(lost, lost_pct, thresh["loss_percentage"], thresh["loss_amount"])
    has_wastage = wastage > thresh["wastage_percentage"]

    return {
        "material_id": get("id"),
        "metrics": {
            "variance": var,
            "variance_percentage": var_pct,
            "variance_cost": var_cost,
            "loss": lost,
            "loss_percentage": lost_pct,
            "loss_cost": lost_cost,
            "wastage": wastage,
            "total_discrepancy_cost": total_cost,
        },
        "alerts": {
            "variance": has_variance,
            "loss": has_loss,
            "wastage": has_wastage,
            "has_any_alert": has_variance or has_loss or has_wastage,
        },
        "severity": severity_level(has_variance, has_loss, has_wastage, total_cost),
    }


def record_discrepancy(material: Material) -> Discrepancy | None:
    """Check a material and store a Discrepancy row when an alert fires.

    Earlier open records for the same material are resolved so that only
    the latest check stays open. Flushes only; the caller commits.
    """
    result = check_material_discrepancies(material)
    if not result["alerts"]["has_any_alert"]:
        return None

    (
        Discrepancy.query
        .filter_by(material_id=material.id, status="open")
        .update({"status": "resolved"}, synchronize_session="fetch")
    )
    row = Discrepancy(
        material_id=material.id,
        project_id=material.project_id,
        severity=result["severity"],
        alerts=result["alerts"],
        metrics=result["metrics"],
        discrepancy_cost=result["metrics"]["total_discrepancy_cost"],
    )
    db.session.add(row)
    db.session.flush()
    logger.warning(
        "Material discrepancy detected",
        extra={"project_id": material.project_id, "event_type": "discrepancy"},
    )
    return row


def latest_discrepancy(material_id: int) -> Discrepancy | None:
    return (
        Discrepancy.query_active()
        .filter_by(material_id=material_id)
        .order_by(Discrepancy.id.desc())
        .first()
    )


def project_discrepancy_summary(project_id: int | None = None) -> dict:
    """Open discrepancy counts by severity, plus their total cost."""
    q = Discrepancy.query_active().filter_by(status="open")
    if project_id is not None:
        q = q.filter_by(project_id=project_id)
    summary = {"CRITICAL": 0, "HIGH": 0, "MEDIUM": 0, "LOW": 0, "total_cost": 0.0}
    for row in q.all():
        summary[row.severity] = summary.get(row.severity, 0) + 1
        summary["total_cost"] += row.discrepancy_cost or 0
    summary["total_cost"] = round(summary["total_cost"], 2)
    return summary
