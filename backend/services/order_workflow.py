"""
Order Workflow Stage Catalog
Defines the production stages, order/item statuses and the next-stage rule.
This is the single source of truth for stage ordering.

Nothing in this module touches the database.
"""
from enum import Enum
from typing import List, Dict, Optional, Set, Iterable, Tuple

from models import TimelineAction, StageAction


class Stage(str, Enum):
    """Production stages, in canonical order."""
    INTAKE = "intake"
    MATERIALS = "materials"
    MARKING = "marking"
    MARKING_CHECKER = "marking_checker"
    CUTTING = "cutting"
    CUTTING_CHECKER = "cutting_checker"
    AARI_WORK = "aari_work"
    STITCHING = "stitching"
    STITCHING_CHECKER = "stitching_checker"
    HOOKS = "hooks"
    IRONING = "ironing"
    BILLING = "billing"
    # Delivery-type stage, outside the forward scan
    DELIVERY = "delivery"


class OrderStatus(str, Enum):
    DRAFT = "draft"
    OTP_SENT = "otp_sent"
    CONFIRMED_LOCKED = "confirmed_locked"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DELIVERED = "delivered"


class ItemStatus(str, Enum):
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DELIVERED = "delivered"
    HOLD = "hold"


class OverallStatus(str, Enum):
    """Order-level summary computed from its items."""
    IN_PROGRESS = "in_progress"
    PARTIAL = "partial"
    COMPLETED = "completed"
    DELIVERED = "delivered"


# ============================================================================
# ERRORS
# ============================================================================

class WorkflowError(Exception):
    """Base class for workflow rule violations."""
    pass


class UnknownStageError(WorkflowError):
    """Stage identifier is not part of the catalog."""

    def __init__(self, stage):
        self.stage = stage
        super().__init__(f"Unknown stage: {stage!r}")


class NoNextStageError(WorkflowError):
    """Resolver found nothing to move to and the order is not at its last active stage."""
    pass


class InvalidTransitionError(WorkflowError):
    pass


class StageMismatchError(WorkflowError):
    """The order or item is not at the stage the actor is completing."""
    pass


class OrderNotFoundError(WorkflowError):
    pass


class ConcurrentTransitionError(WorkflowError):
    """Another writer moved the order or item between read and write."""
    pass


class PartialWriteError(WorkflowError):
    """State write succeeded but an audit append did not."""

    def __init__(self, collection: str, record_id: str, cause: Exception):
        self.collection = collection
        self.record_id = record_id
        self.cause = cause
        super().__init__(f"Audit write to {collection} failed for {record_id}: {cause}")


# ============================================================================
# CATALOG
# ============================================================================

# Canonical forward order - total ordering used by the resolver
STAGE_ORDER: List[str] = [
    Stage.INTAKE.value,
    Stage.MATERIALS.value,
    Stage.MARKING.value,
    Stage.MARKING_CHECKER.value,
    Stage.CUTTING.value,
    Stage.CUTTING_CHECKER.value,
    Stage.AARI_WORK.value,
    Stage.STITCHING.value,
    Stage.STITCHING_CHECKER.value,
    Stage.HOOKS.value,
    Stage.IRONING.value,
    Stage.BILLING.value,
]

DELIVERY_STAGES: Set[str] = {Stage.DELIVERY.value}

# Checker stage -> the stage it sends work back to on reject
CHECKER_STAGES: Dict[str, str] = {
    Stage.MARKING_CHECKER.value: Stage.MARKING.value,
    Stage.CUTTING_CHECKER.value: Stage.CUTTING.value,
    Stage.STITCHING_CHECKER.value: Stage.STITCHING.value,
}

OPTIONAL_STAGES: Set[str] = {Stage.AARI_WORK.value}

# Statuses in which an order can be worked on
WORKABLE_ORDER_STATUSES: Set[str] = {
    OrderStatus.CONFIRMED_LOCKED.value,
    OrderStatus.IN_PROGRESS.value,
}

TERMINAL_ITEM_STATUSES: Set[str] = {
    ItemStatus.COMPLETED.value,
    ItemStatus.DELIVERED.value,
}

# Role that works each stage; admin and supervisor may act on any stage
STAGE_ROLES: Dict[str, str] = {
    "intake": "intake",
    "materials": "materials",
    "marking": "marking",
    "marking_checker": "marking_checker",
    "cutting": "cutting",
    "cutting_checker": "cutting_checker",
    "aari_work": "aari",
    "stitching": "stitching",
    "stitching_checker": "stitching_checker",
    "hooks": "hooks",
    "ironing": "ironing",
    "billing": "billing",
    "delivery": "delivery",
}

OVERSEER_ROLES: Set[str] = {"admin", "supervisor"}

STAGE_DISPLAY_NAMES: Dict[str, str] = {
    "intake": "Intake",
    "materials": "Materials",
    "marking": "Marking",
    "marking_checker": "Marking Check",
    "cutting": "Cutting",
    "cutting_checker": "Cutting Check",
    "aari_work": "Aari Work",
    "stitching": "Stitching",
    "stitching_checker": "Stitching Check",
    "hooks": "Hooks & Finishing",
    "ironing": "Ironing",
    "billing": "Billing",
    "delivery": "Delivery",
}


def _value(stage) -> str:
    return stage.value if isinstance(stage, Enum) else stage


def is_known_stage(stage) -> bool:
    stage = _value(stage)
    return stage in STAGE_ORDER or stage in DELIVERY_STAGES


def require_stage(stage) -> str:
    """Return the stage identifier or raise UnknownStageError."""
    stage = _value(stage)
    if not is_known_stage(stage):
        raise UnknownStageError(stage)
    return stage


def is_checker_stage(stage) -> bool:
    return _value(stage) in CHECKER_STAGES


def is_delivery_stage(stage) -> bool:
    return _value(stage) in DELIVERY_STAGES


def can_work_stage(role, stage) -> bool:
    role = _value(role)
    return role in OVERSEER_ROLES or STAGE_ROLES.get(_value(stage)) == role


def normalize_active_stages(stages: Iterable[str]) -> List[str]:
    """Validate stage identifiers and return them deduplicated in canonical order."""
    wanted = set()
    for stage in stages:
        stage = _value(stage)
        if stage not in STAGE_ORDER:
            raise UnknownStageError(stage)
        wanted.add(stage)
    return [s for s in STAGE_ORDER if s in wanted]


def default_active_stages(garment_type: str, include_aari_work: Optional[bool] = None) -> List[str]:
    """
    Active stages for a garment type.
    Aari garments include aari_work; everything else skips it unless asked.
    """
    garment_type = _value(garment_type) or ""
    if include_aari_work is None:
        include_aari_work = garment_type.startswith("aari_")
    return [
        s for s in STAGE_ORDER
        if s not in OPTIONAL_STAGES or (s == Stage.AARI_WORK.value and include_aari_work)
    ]


def next_stage(current_stage, active_stages: Iterable[str]) -> Optional[str]:
    """
    First stage strictly after current_stage (canonical order) that is active.
    Returns None when nothing follows. Raises UnknownStageError for identifiers
    outside the canonical order.
    """
    current_stage = _value(current_stage)
    if current_stage not in STAGE_ORDER:
        raise UnknownStageError(current_stage)
    active = {_value(s) for s in active_stages or []}
    for stage in STAGE_ORDER[STAGE_ORDER.index(current_stage) + 1:]:
        if stage in active:
            return stage
    return None


def first_stage(active_stages: Iterable[str]) -> Optional[str]:
    """Stage an order starts at once confirmed (intake is done at creation)."""
    active = normalize_active_stages(active_stages)
    if not active:
        return None
    if active[0] == Stage.INTAKE.value:
        return next_stage(Stage.INTAKE.value, active) or active[0]
    return active[0]


def normalize_action(stage, action: StageAction) -> TimelineAction:
    """Map the requested action to the action recorded in the timeline."""
    stage = _value(stage)
    action = StageAction(action)
    if is_delivery_stage(stage):
        return TimelineAction.DELIVERED
    if is_checker_stage(stage):
        if action == StageAction.REJECT:
            return TimelineAction.CHECKED_REJECT
        return TimelineAction.CHECKED_OK
    if action == StageAction.REJECT:
        raise InvalidTransitionError(f"Stage {stage} is not a checker stage and cannot reject")
    return TimelineAction.COMPLETED


def resolve_transition(
    current_stage,
    active_stages: Iterable[str],
    action: StageAction = StageAction.COMPLETE,
    previous_stage: Optional[str] = None,
    hold: bool = False,
    item_level: bool = False,
) -> Tuple[Optional[str], str, TimelineAction]:
    """
    Work out where a completion at current_stage leads.

    Returns (next_stage, next_status, recorded_action). next_stage is None once
    the workflow is finished. Status values come from OrderStatus for orders
    and ItemStatus for items (they share in_progress/completed/delivered).
    """
    current_stage = require_stage(current_stage)
    recorded = normalize_action(current_stage, action)
    active = normalize_active_stages(active_stages or [])

    if recorded == TimelineAction.CHECKED_REJECT:
        target = require_stage(previous_stage or CHECKER_STAGES[current_stage])
        if target not in active:
            raise InvalidTransitionError(
                f"Cannot send back to {target}: not an active stage"
            )
        if STAGE_ORDER.index(target) >= STAGE_ORDER.index(current_stage):
            raise InvalidTransitionError(
                f"Reject from {current_stage} must go back, not to {target}"
            )
        if hold and item_level:
            return target, ItemStatus.HOLD.value, recorded
        return target, ItemStatus.IN_PROGRESS.value, recorded

    if recorded == TimelineAction.DELIVERED:
        return None, OrderStatus.DELIVERED.value, recorded

    following = next_stage(current_stage, active)
    if following is not None:
        return following, OrderStatus.IN_PROGRESS.value, recorded

    # Nothing follows: only legitimate if we are at the last active stage
    if not active or active[-1] != current_stage:
        raise NoNextStageError(
            f"No stage follows {current_stage} and it is not the last active stage "
            f"(active stages: {active}); check the order's stage configuration"
        )
    return None, OrderStatus.COMPLETED.value, recorded


def compute_overall_status(items: List[Dict]) -> Dict:
    """Order-level progress summary derived from item statuses."""
    if not items:
        return {
            "total_items": 0,
            "completed_items": 0,
            "overall_status": OverallStatus.IN_PROGRESS.value,
        }
    total = len(items)
    completed = sum(1 for i in items if i.get("status") in TERMINAL_ITEM_STATUSES)
    delivered = sum(1 for i in items if i.get("status") == ItemStatus.DELIVERED.value)

    if delivered == total:
        overall = OverallStatus.DELIVERED
    elif completed == total:
        overall = OverallStatus.COMPLETED
    elif completed > 0:
        overall = OverallStatus.PARTIAL
    else:
        overall = OverallStatus.IN_PROGRESS

    return {
        "total_items": total,
        "completed_items": completed,
        "overall_status": overall.value,
    }
