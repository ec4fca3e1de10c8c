from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Dict, Any, List, Literal, Union
from datetime import datetime, timezone
from enum import Enum
import uuid

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class UserRole(str, Enum):
    ADMIN = "admin"
    SUPERVISOR = "supervisor"
    INTAKE = "intake"
    MATERIALS = "materials"
    MARKING = "marking"
    MARKING_CHECKER = "marking_checker"
    CUTTING = "cutting"
    CUTTING_CHECKER = "cutting_checker"
    AARI = "aari"
    STITCHING = "stitching"
    STITCHING_CHECKER = "stitching_checker"
    HOOKS = "hooks"
    IRONING = "ironing"
    BILLING = "billing"
    DELIVERY = "delivery"
    PURCHASE = "purchase"
    ACCOUNTANT = "accountant"


class GarmentType(str, Enum):
    BLOUSE = "blouse"
    LINING_BLOUSE = "lining_blouse"
    SADA_BLOUSE = "sada_blouse"
    CHUDI = "chudi"
    FROCK = "frock"
    TOP = "top"
    PANT = "pant"
    LEHENGA = "lehenga"
    PAVADAI_SATTAI = "pavadai_sattai"
    AARI_BLOUSE = "aari_blouse"
    AARI_PAVADA_SATTAI = "aari_pavada_sattai"
    REWORK = "rework"
    OTHER = "other"


class TimelineAction(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    CHECKED_OK = "checked_ok"
    CHECKED_REJECT = "checked_reject"
    DELIVERED = "delivered"


class StageAction(str, Enum):
    """What the acting staff member asks for at a stage."""
    COMPLETE = "complete"
    APPROVE = "approve"
    REJECT = "reject"


class AssignmentTarget(str, Enum):
    ORDER_ITEM = "order_item"
    STAGE_TASK = "stage_task"


class TaskStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    NEEDS_REWORK = "needs_rework"
    APPROVED = "approved"


class PaymentStatus(str, Enum):
    PAID = "paid"
    PARTIALLY_PAID = "partially_paid"
    NOT_PAID = "not_paid"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# STAFF & CONTEXT
# ============================================================================

class StaffRef(BaseModel):
    """A staff member as referenced from assignments and audit rows."""
    staff_id: str
    name: str = ""


class Actor(BaseModel):
    """The staff member performing an action, with the role they act under."""
    staff_id: str
    name: str = ""
    role: UserRole


class StaffMember(BaseModel):
    """Staff directory entry (staff collection, keyed by staff_id)."""
    model_config = ConfigDict(use_enum_values=True)

    staff_id: str
    name: str
    email: Optional[str] = None
    role: UserRole
    allowed_stages: List[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class StaffMemberUpdate(BaseModel):
    name: str
    email: Optional[str] = None
    role: UserRole
    allowed_stages: List[str] = Field(default_factory=list)
    is_active: bool = True


# ============================================================================
# CUSTOMERS
# ============================================================================

class Customer(BaseModel):
    """Customer profile keyed by normalised phone number."""
    model_config = ConfigDict(extra="ignore")

    phone_number: str
    name: str
    address: str = ""
    total_orders: int = 0
    delivered_orders: int = 0
    order_ids: List[str] = Field(default_factory=list)
    last_order_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ============================================================================
# ORDER SUB-RECORDS
# ============================================================================

class BillLineItem(BaseModel):
    sno: int
    particular: str
    qty: float = 1
    price: float = 0
    total: float = 0


class OrderBilling(BaseModel):
    model_config = ConfigDict(extra="allow")

    bill_number: Optional[str] = None
    line_items: List[BillLineItem] = Field(default_factory=list)
    materials_cost: float = 0
    subtotal: float = 0
    discount_amount: float = 0
    final_amount: float = 0
    amount_received: float = 0
    advance_paid: float = 0
    balance: float = 0
    payment_status: PaymentStatus = PaymentStatus.NOT_PAID
    billed_by_staff_id: Optional[str] = None


class MaterialUsage(BaseModel):
    material_id: str
    material_name: str
    category: str = ""
    quantity: float = 0
    meter: float = 0
    total_length: float = 0


class OrderMaterials(BaseModel):
    used_items: List[MaterialUsage] = Field(default_factory=list)
    total_length_used: float = 0
    completed_by_staff_id: Optional[str] = None
    completed_by_staff_name: Optional[str] = None


class PlannedMaterial(BaseModel):
    """Intake-time estimate; never touches inventory."""
    material_id: str
    material_name: str
    colour: str = ""
    measurement: float = 0
    unit: Literal["Meter", "Gram", "Packet"] = "Meter"
    material_source: Literal["customer", "company"] = "company"


class OrderItemCreate(BaseModel):
    item_name: str
    garment_type: GarmentType
    quantity: int = 1
    measurements: Dict[str, Any] = Field(default_factory=dict)
    reference_images: List[Any] = Field(default_factory=list)
    design_notes: str = ""
    active_stages: Optional[List[str]] = None


class OrderCreate(BaseModel):
    customer_id: Optional[str] = None
    customer_name: str
    customer_phone: str
    customer_address: str = ""
    garment_type: GarmentType
    include_aari_work: Optional[bool] = None
    active_stages: Optional[List[str]] = None
    assigned_staff: Dict[str, str] = Field(default_factory=dict)
    measurements: Dict[str, Any] = Field(default_factory=dict)
    sampler_images: List[Any] = Field(default_factory=list)
    planned_materials: List[PlannedMaterial] = Field(default_factory=list)
    design_notes: str = ""
    due_date: Optional[datetime] = None
    items: List[OrderItemCreate] = Field(default_factory=list)


# ============================================================================
# AUDIT RECORDS
# ============================================================================

class TimelineEntry(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    order_id: str
    item_id: Optional[str] = None
    staff_id: str
    role: str
    stage: str
    sub_stage: Optional[str] = None
    action: TimelineAction
    timestamp: datetime = Field(default_factory=utcnow)


class StaffWorkLog(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    log_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    staff_id: str
    role: str
    order_id: str
    item_id: Optional[str] = None
    stage: str
    sub_stage: Optional[str] = None
    action: TimelineAction
    timestamp: datetime = Field(default_factory=utcnow)


class AssignmentAuditLog(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    log_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    item_id: str
    order_id: str
    assignment_target: AssignmentTarget
    stage: Optional[str] = None
    sub_stage: Optional[str] = None
    assigned_from_staff_id: Optional[str] = None
    assigned_from_staff_name: Optional[str] = None
    assigned_to_staff_id: str
    assigned_to_staff_name: str = ""
    assigned_by_staff_id: str
    assigned_by_staff_name: str = ""
    assigned_by_role: Literal["admin", "supervisor"]
    timestamp: datetime = Field(default_factory=utcnow)


# ============================================================================
# TASK REFERENCES (tagged variant)
# ============================================================================

class EmbeddedTaskRef(BaseModel):
    """A task stored as a map field on the order, e.g. marking_tasks.{task_key}."""
    kind: Literal["embedded"] = "embedded"
    order_id: str
    task_key: str
    stage: str


class StandaloneTaskRef(BaseModel):
    """A task stored as its own document, e.g. cutting_tasks/{doc_id}."""
    kind: Literal["standalone"] = "standalone"
    collection: str
    doc_id: str
    stage: str


class OrderItemRef(BaseModel):
    kind: Literal["order_item"] = "order_item"
    order_id: str
    item_index: int
    stage: Optional[str] = None


TaskRef = Union[EmbeddedTaskRef, StandaloneTaskRef, OrderItemRef]


class Assignment(BaseModel):
    target: TaskRef = Field(..., discriminator="kind")
    current_staff: Optional[StaffRef] = None


# ============================================================================
# TEMPLATES & SETTINGS
# ============================================================================

class TemplateTask(BaseModel):
    task_name: str
    task_order: int
    is_mandatory: bool = True


class StageTemplate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    template_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    stage: str
    garment_type: GarmentType
    tasks: List[TemplateTask] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class StageDefaults(BaseModel):
    """Stage name -> default staff_id."""
    defaults: Dict[str, str] = Field(default_factory=dict)
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None


# ============================================================================
# REPORTING
# ============================================================================

class FinancialMetrics(BaseModel):
    date_range_start: Optional[datetime] = None
    order_count: int = 0
    billed_order_count: int = 0
    total_revenue: float = 0
    total_materials_cost: float = 0
    profit: float = 0


class StaffMetrics(BaseModel):
    staff_id: str
    role: Optional[str] = None
    assigned: int = 0
    completed: int = 0
    reassigned_away: int = 0
    active_items: int = 0
