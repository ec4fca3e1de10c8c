"""
Stage catalog and next-stage resolver.
Pure functions: no database, no mocks.
"""
import itertools
import random
import pytest

from models import StageAction, TimelineAction
from services.order_workflow import (
    STAGE_ORDER,
    UnknownStageError,
    NoNextStageError,
    InvalidTransitionError,
    next_stage,
    first_stage,
    normalize_active_stages,
    default_active_stages,
    normalize_action,
    resolve_transition,
    compute_overall_status,
    can_work_stage,
)


def test_next_stage_returns_earliest_active_stage_after_current():
    rng = random.Random(7)
    for _ in range(500):
        current = rng.choice(STAGE_ORDER[:-1])
        later = STAGE_ORDER[STAGE_ORDER.index(current) + 1:]
        active = set(rng.sample(STAGE_ORDER, rng.randint(0, len(STAGE_ORDER))))
        active.add(rng.choice(later))

        result = next_stage(current, active)

        expected = next(s for s in later if s in active)
        assert result == expected
        assert result in active
        assert STAGE_ORDER.index(result) > STAGE_ORDER.index(current)


def test_next_stage_skips_inactive_stages():
    assert next_stage("materials", ["intake", "materials", "cutting", "billing"]) == "cutting"
    assert next_stage("cutting_checker", ["cutting_checker", "stitching"]) == "stitching"


def test_next_stage_at_last_active_stage_is_none():
    for size in range(1, 5):
        for active in itertools.combinations(STAGE_ORDER, size):
            assert next_stage(active[-1], active) is None


@pytest.mark.parametrize("stage", ["", "Cutting", "embroidery", "delivery ", "qc"])
def test_unknown_stage_raises(stage):
    with pytest.raises(UnknownStageError):
        next_stage(stage, STAGE_ORDER)


def test_delivery_is_not_part_of_the_forward_scan():
    with pytest.raises(UnknownStageError):
        next_stage("delivery", STAGE_ORDER)
    with pytest.raises(UnknownStageError):
        normalize_active_stages(["intake", "delivery"])


def test_normalize_active_stages_orders_and_dedupes():
    assert normalize_active_stages(["billing", "intake", "cutting", "intake"]) == ["intake", "cutting", "billing"]


def test_default_active_stages_includes_aari_only_for_aari_garments():
    assert "aari_work" not in default_active_stages("blouse")
    assert "aari_work" in default_active_stages("aari_blouse")
    assert "aari_work" in default_active_stages("blouse", include_aari_work=True)
    assert "aari_work" not in default_active_stages("aari_blouse", include_aari_work=False)


def test_first_stage_skips_intake():
    assert first_stage(["intake", "materials", "cutting"]) == "materials"
    assert first_stage(["cutting", "billing"]) == "cutting"
    assert first_stage([]) is None


def test_normalize_action():
    assert normalize_action("cutting", StageAction.COMPLETE) == TimelineAction.COMPLETED
    assert normalize_action("cutting_checker", StageAction.APPROVE) == TimelineAction.CHECKED_OK
    assert normalize_action("cutting_checker", StageAction.COMPLETE) == TimelineAction.CHECKED_OK
    assert normalize_action("cutting_checker", StageAction.REJECT) == TimelineAction.CHECKED_REJECT
    assert normalize_action("delivery", StageAction.COMPLETE) == TimelineAction.DELIVERED
    with pytest.raises(InvalidTransitionError):
        normalize_action("cutting", StageAction.REJECT)


def test_resolve_transition_advances_in_progress():
    following, status, action = resolve_transition("materials", ["intake", "materials", "cutting", "billing"])
    assert (following, status, action) == ("cutting", "in_progress", TimelineAction.COMPLETED)


def test_resolve_transition_last_active_stage_completes():
    following, status, _ = resolve_transition("materials", ["intake", "materials"])
    assert following is None
    assert status == "completed"


def test_resolve_transition_with_nothing_after_and_not_last_raises():
    # current stage is not part of the active set at all
    with pytest.raises(NoNextStageError):
        resolve_transition("hooks", ["intake", "materials"])
    with pytest.raises(NoNextStageError):
        resolve_transition("hooks", [])


def test_checker_reject_goes_back_to_previous_stage():
    active = default_active_stages("blouse")
    following, status, action = resolve_transition(
        "cutting_checker", active, action=StageAction.REJECT, previous_stage="cutting", item_level=True
    )
    assert following == "cutting"
    assert status == "in_progress"
    assert action == TimelineAction.CHECKED_REJECT


def test_checker_reject_defaults_to_guarded_stage_and_can_hold():
    active = default_active_stages("blouse")
    following, status, _ = resolve_transition(
        "stitching_checker", active, action=StageAction.REJECT, hold=True, item_level=True
    )
    assert following == "stitching"
    assert status == "hold"


def test_checker_reject_cannot_go_forward_or_to_inactive_stage():
    active = ["intake", "marking", "marking_checker", "cutting", "cutting_checker", "billing"]
    with pytest.raises(InvalidTransitionError):
        resolve_transition("marking_checker", active, action=StageAction.REJECT, previous_stage="cutting")
    with pytest.raises(InvalidTransitionError):
        resolve_transition("cutting_checker", active, action=StageAction.REJECT, previous_stage="materials")


def test_delivery_resolves_to_delivered():
    assert resolve_transition("delivery", STAGE_ORDER) == (None, "delivered", TimelineAction.DELIVERED)


def test_compute_overall_status():
    assert compute_overall_status([])["overall_status"] == "in_progress"
    assert compute_overall_status([{"status": "in_progress"}, {"status": "completed"}]) == {
        "total_items": 2,
        "completed_items": 1,
        "overall_status": "partial",
    }
    assert compute_overall_status([{"status": "completed"}, {"status": "delivered"}])["overall_status"] == "completed"
    assert compute_overall_status([{"status": "delivered"}])["overall_status"] == "delivered"


def test_can_work_stage():
    assert can_work_stage("cutting", "cutting")
    assert can_work_stage("aari", "aari_work")
    assert can_work_stage("supervisor", "billing")
    assert not can_work_stage("cutting", "cutting_checker")
