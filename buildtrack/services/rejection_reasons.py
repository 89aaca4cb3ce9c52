"""
Supplier rejection reason catalogue.

Structured reasons a supplier can give when rejecting a purchase order,
with the retryability assessment used to decide whether the order may be
re-sent after adjustment.
"""

REJECTION_REASONS = {
    "price_too_high": {
        "label": "Price Too High",
        "description": "Supplier rejects due to pricing concerns",
        "priority": "high",
        "subcategories": [
            "market_rates_higher", "material_costs_increased", "labor_costs_high",
            "overhead_costs", "insufficient_profit_margin", "currency_fluctuation",
        ],
    },
    "unavailable": {
        "label": "Material Unavailable",
        "description": "Supplier cannot fulfill due to material availability",
        "priority": "critical",
        "subcategories": [
            "out_of_stock", "material_discontinued", "seasonal_unavailable",
            "supplier_shortage", "manufacturing_delay", "shipping_constraints",
        ],
    },
    "timeline": {
        "label": "Timeline Issues",
        "description": "Supplier cannot meet required delivery schedule",
        "priority": "medium",
        "subcategories": [
            "delivery_date_too_soon", "insufficient_production_time", "logistics_delay",
            "weather_related_delays", "current_workload_too_high", "staff_shortage",
        ],
    },
    "specifications": {
        "label": "Specification Issues",
        "description": "Supplier cannot meet material specifications",
        "priority": "high",
        "subcategories": [
            "cannot_meet_quality_standards", "technical_specifications_unmet",
            "material_grade_unavailable", "custom_requirements_impossible",
            "certification_requirements", "testing_requirements",
        ],
    },
    "quantity": {
        "label": "Quantity Issues",
        "description": "Supplier cannot fulfill required quantity",
        "priority": "medium",
        "subcategories": [
            "below_minimum_order_quantity", "exceeds_production_capacity",
            "batch_size_constraints", "storage_limitations", "can_only_partial_fulfill",
        ],
    },
    "business_policy": {
        "label": "Business Policy",
        "description": "Supplier rejects due to internal business policies",
        "priority": "low",
        "subcategories": [
            "unacceptable_payment_terms", "contract_terms_unacceptable",
            "insurance_requirements", "licensing_restrictions",
            "geographic_service_limits", "client_specific_restrictions",
        ],
    },
    "external_factors": {
        "label": "External Factors",
        "description": "Rejection due to factors outside supplier control",
        "priority": "variable",
        "subcategories": [
            "regulatory_changes", "market_volatility", "force_majeure",
            "transportation_issues", "supply_chain_disruption", "economic_conditions",
        ],
    },
    "other": {
        "label": "Other Reasons",
        "description": "Custom or unspecified rejection reasons",
        "priority": "low",
        "subcategories": [
            "custom_reason", "not_specified", "supplier_preference",
            "business_relationship_issues",
        ],
    },
}

RETRY_RULES = {
    "price_too_high": (True, 0.7, "Consider price negotiation or alternative specifications"),
    "unavailable": (False, 0.9, "Find alternative supplier or material"),
    "timeline": (True, 0.6, "Adjust delivery date or split order"),
    "specifications": (True, 0.5, "Review specifications or find specialized supplier"),
    "quantity": (True, 0.8, "Adjust quantity or split into multiple orders"),
    "business_policy": (False, 0.8, "Respect supplier policies or find alternative"),
    "external_factors": (True, 0.4, "Monitor conditions and retry when resolved"),
    "other": (True, 0.3, "Contact supplier for clarification"),
}

PRIORITY_VALUES = {"critical": 5, "high": 4, "medium": 3, "low": 2, "variable": 1}


def get_rejection_reason(reason_id: str) -> dict | None:
    return REJECTION_REASONS.get(reason_id)


def subcategory_label(subcategory_id: str) -> str:
    return " ".join(word.capitalize() for word in subcategory_id.split("_"))


def assess_retryability(reason_id: str, subcategory_id: str | None = None) -> dict:
    """Decide whether an order rejected for ``reason_id`` is worth re-sending.

    Returns:
        {"retryable", "confidence", "recommendation", "reason_category", "priority"}
    """
    reason = REJECTION_REASONS.get(reason_id)
    rule = RETRY_RULES.get(reason_id)
    if reason is None or rule is None:
        return {
            "retryable": False,
            "confidence": 0.0,
            "recommendation": "Unknown reason - manual review required",
            "reason_category": None,
            "priority": None,
        }
    retryable, confidence, recommendation = rule
    return {
        "retryable": retryable,
        "confidence": confidence,
        "recommendation": recommendation,
        "reason_category": reason["label"],
        "priority": reason["priority"],
    }


def rejection_reason_options() -> list[dict]:
    """Catalogue for pickers and the /rejection-reasons endpoint."""
    options = []
    for reason_id, reason in REJECTION_REASONS.items():
        retryable, confidence, recommendation = RETRY_RULES[reason_id]
        options.append({
            "value": reason_id,
            "label": reason["label"],
            "description": reason["description"],
            "priority": reason["priority"],
            "priority_value": PRIORITY_VALUES[reason["priority"]],
            "retryable": retryable,
            "confidence": confidence,
            "recommendation": recommendation,
            "subcategories": [
                {"value": sub, "label": subcategory_label(sub)} for sub in reason["subcategories"]
            ],
        })
    return options
