"""Reporting Service - financial summary and staff performance.

Report Types:
1. Financial - revenue, materials cost and profit for orders created in a range
2. Staff Performance - per-staff counts from work logs, assignment logs and open work

Read-only: nothing here writes to the database.
"""
from database import database
from models import FinancialMetrics, StaffMetrics, TimelineAction
from services.order_workflow import OrderStatus, ItemStatus
from services import staff_service
from datetime import datetime, timezone, timedelta
from typing import Dict, Any, List, Optional
import calendar
import logging

logger = logging.getLogger(__name__)

DATE_RANGE_KEYS = ("today", "day", "week", "month", "year", "all")

COMPLETION_ACTIONS = [TimelineAction.COMPLETED.value, TimelineAction.CHECKED_OK.value]


def _months_back(when: datetime, months: int) -> datetime:
    month_index = when.month - 1 - months
    year = when.year + month_index // 12
    month = month_index % 12 + 1
    day = min(when.day, calendar.monthrange(year, month)[1])
    return when.replace(year=year, month=month, day=day)


def get_date_range_start(range_key: str, now: Optional[datetime] = None) -> datetime:
    """
    Start of a reporting window.
    today/day: midnight UTC; week: 7 days back; month/year: one calendar month/year back;
    all (or anything unrecognised): the epoch.
    """
    now = now or datetime.now(timezone.utc)
    if range_key in ("today", "day"):
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if range_key == "week":
        return now - timedelta(days=7)
    if range_key == "month":
        return _months_back(now, 1)
    if range_key == "year":
        return _months_back(now, 12)
    return datetime(1970, 1, 1, tzinfo=timezone.utc)


class ReportingService:
    """Aggregates orders and audit logs into report metrics."""

    def __init__(self):
        self.db = None

    async def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    async def aggregate(
        self,
        date_range_start: datetime,
        filters: Optional[Dict[str, Any]] = None,
    ) -> FinancialMetrics:
        """
        Revenue and materials cost over billed orders created since date_range_start.
        profit = revenue - materials cost. Orders without billing count toward
        order_count only.
        """
        db = await self._get_db()
        query: Dict[str, Any] = {"created_at": {"$gte": date_range_start}}
        for key in ("garment_type", "status"):
            if filters and filters.get(key):
                query[key] = filters[key]

        orders = await db.orders.find(
            query,
            {"_id": 0, "order_id": 1, "billing": 1},
        ).to_list(10000)

        revenue = 0.0
        materials_cost = 0.0
        billed = 0
        for order in orders:
            billing = order.get("billing")
            if not billing:
                continue
            billed += 1
            revenue += float(billing.get("final_amount") or 0)
            materials_cost += float(billing.get("materials_cost") or 0)

        return FinancialMetrics(
            date_range_start=date_range_start,
            order_count=len(orders),
            billed_order_count=billed,
            total_revenue=revenue,
            total_materials_cost=materials_cost,
            profit=revenue - materials_cost,
        )

    async def staff_performance(
        self,
        date_range_start: datetime,
        role: Optional[str] = None,
    ) -> List[StaffMetrics]:
        """
        Per-staff counts since date_range_start, most completions first.

        - assigned: assignment logs naming the staff member as the new assignee
        - completed: work logs with a completed or checked_ok action
        - reassigned_away: assignment logs naming the staff member as the previous assignee
        - active_items: in-progress orders and items currently assigned to them

        role is the staff directory role. With a role filter, active staff of
        that role are listed even when they have no activity.
        """
        db = await self._get_db()
        since = {"$gte": date_range_start}

        work_logs = await db.staff_work_logs.find(
            {"timestamp": since},
            {"_id": 0, "staff_id": 1, "role": 1, "action": 1, "timestamp": 1},
        ).sort("timestamp", 1).to_list(50000)
        assignment_logs = await db.assignment_logs.find(
            {"timestamp": since},
            {"_id": 0, "assigned_to_staff_id": 1, "assigned_from_staff_id": 1},
        ).to_list(50000)
        open_orders = await db.orders.find(
            {"status": OrderStatus.IN_PROGRESS.value},
            {"_id": 0, "assigned_staff": 1, "items": 1},
        ).to_list(10000)

        metrics: Dict[str, StaffMetrics] = {}

        def entry(staff_id: str) -> StaffMetrics:
            if staff_id not in metrics:
                metrics[staff_id] = StaffMetrics(staff_id=staff_id)
            return metrics[staff_id]

        for log in work_logs:
            m = entry(log["staff_id"])
            # Latest role wins
            m.role = log.get("role") or m.role
            if log.get("action") in COMPLETION_ACTIONS:
                m.completed += 1

        for log in assignment_logs:
            if log.get("assigned_to_staff_id"):
                entry(log["assigned_to_staff_id"]).assigned += 1
            if log.get("assigned_from_staff_id"):
                entry(log["assigned_from_staff_id"]).reassigned_away += 1

        for order in open_orders:
            for staff_id in set(v for v in (order.get("assigned_staff") or {}).values() if v):
                entry(staff_id).active_items += 1
            for item in order.get("items") or []:
                if item.get("assigned_staff_id") and item.get("status") == ItemStatus.IN_PROGRESS.value:
                    entry(item["assigned_staff_id"]).active_items += 1

        # Directory role first; the latest logged role covers staff not in the directory
        directory_roles = await staff_service.get_staff_roles(metrics.keys())
        if role:
            # Staff of the role show up even without activity in the range
            for member in await staff_service.get_staff_by_roles([role]):
                entry(member["staff_id"])
                directory_roles.setdefault(member["staff_id"], member.get("role"))
        for staff_id, m in metrics.items():
            m.role = directory_roles.get(staff_id) or m.role

        results = list(metrics.values())
        if role:
            results = [m for m in results if m.role == role]
        results.sort(key=lambda m: (-m.completed, m.staff_id))
        return results


# Singleton instance
reporting_service = ReportingService()
