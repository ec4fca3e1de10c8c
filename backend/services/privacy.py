"""Customer PII projection for staff-facing reads."""
from enum import Enum
from typing import Dict, Any
import copy

# Roles that deal with the customer directly
CUSTOMER_VISIBLE_ROLES = {"admin", "supervisor", "intake", "billing", "delivery"}

CUSTOMER_FIELDS = ("customer_name", "customer_phone", "customer_address", "customer_id")


def can_view_customer_info(role) -> bool:
    if isinstance(role, Enum):
        role = role.value
    return role in CUSTOMER_VISIBLE_ROLES


def project(order: Dict[str, Any], role) -> Dict[str, Any]:
    """
    Return the order as the given role may see it.
    Unlisted roles get a copy without customer fields, on the order and its items.
    The input is never modified.
    """
    if can_view_customer_info(role):
        return order

    projected = copy.deepcopy(order)
    for field in CUSTOMER_FIELDS:
        projected.pop(field, None)
    for item in projected.get("items") or []:
        for field in CUSTOMER_FIELDS:
            item.pop(field, None)
    return projected
