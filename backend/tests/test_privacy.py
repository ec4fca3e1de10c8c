import copy

import pytest

from models import UserRole
from services.privacy import project, can_view_customer_info, CUSTOMER_FIELDS


ORDER = {
    "order_id": "ORD-1",
    "customer_name": "Lakshmi",
    "customer_phone": "+919800000000",
    "customer_address": "12 Temple St",
    "garment_type": "blouse",
    "items": [{"item_id": "ORD-1-I01", "customer_name": "Lakshmi", "current_stage": "cutting"}],
}


@pytest.mark.parametrize("role", ["admin", "supervisor", "intake", "billing", "delivery"])
def test_customer_facing_roles_see_everything(role):
    assert can_view_customer_info(role)
    assert project(ORDER, role) == ORDER


@pytest.mark.parametrize("role", ["cutting", "stitching_checker", "aari", "accountant", "unknown"])
def test_other_roles_get_customer_fields_stripped(role):
    projected = project(ORDER, role)
    for field in CUSTOMER_FIELDS:
        assert field not in projected
        assert field not in projected["items"][0]
    assert projected["order_id"] == "ORD-1"
    assert projected["items"][0]["current_stage"] == "cutting"


def test_projection_does_not_mutate_input():
    original = copy.deepcopy(ORDER)
    project(ORDER, UserRole.CUTTING)
    assert ORDER == original


def test_projection_is_idempotent():
    once = project(ORDER, UserRole.HOOKS)
    assert project(once, UserRole.HOOKS) == once
