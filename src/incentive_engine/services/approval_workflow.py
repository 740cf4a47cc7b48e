"""Approval workflow engine.

Decides how many approval levels an amount needs, resolves the approver
for each level through the department tree, and computes SLA expiry and
escalation targets.

Approver resolution:
- Level 1: the department's own manager
- Level 2: the parent department's manager
- Level 3: the manager of the root department of the chain

Lookup failures are never fatal; they resolve to None so the caller can
report a routing failure instead of crashing a batch.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable
from uuid import UUID

from incentive_engine.config import ApprovalPolicy
from incentive_engine.domain.calculation import ApproverAssignment
from incentive_engine.domain.organization import Department
from incentive_engine.domain.values import Money
from incentive_engine.services.protocols import DepartmentRepository

logger = logging.getLogger(__name__)

LEVEL_LABELS = {1: "Manager", 2: "Director", 3: "VP"}


@dataclass(frozen=True)
class ApprovalRequirement:
    """Approval depth needed for an amount."""

    required_level: int
    label: str


class CachedDepartmentDirectory:
    """Department lookups served from a time-bounded cache.

    Entries may be up to ``ttl_seconds`` stale; approver changes during
    that window are handled by escalation.
    """

    def __init__(
        self,
        departments: DepartmentRepository,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._departments = departments
        self._ttl = ttl_seconds
        self._clock = clock
        self._by_id: dict[UUID, tuple[Department | None, float]] = {}
        self._hierarchies: dict[UUID, tuple[list[Department], float]] = {}

    async def get(self, department_id: UUID) -> Department | None:
        cached = self._by_id.get(department_id)
        if cached and self._clock() - cached[1] < self._ttl:
            return cached[0]
        department = await self._departments.get(department_id)
        self._by_id[department_id] = (department, self._clock())
        return department

    async def get_hierarchy(self, department_id: UUID) -> list[Department]:
        cached = self._hierarchies.get(department_id)
        if cached and self._clock() - cached[1] < self._ttl:
            return cached[0]
        chain = await self._departments.get_hierarchy(department_id)
        self._hierarchies[department_id] = (chain, self._clock())
        return chain

    def invalidate(self, department_id: UUID | None = None) -> None:
        """Drop one department (or everything) from the cache."""
        if department_id is None:
            self._by_id.clear()
            self._hierarchies.clear()
            return
        self._by_id.pop(department_id, None)
        self._hierarchies.clear()


class ApprovalWorkflowEngine:
    """Value-based multi-level approval routing."""

    def __init__(
        self,
        departments: DepartmentRepository,
        policy: ApprovalPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.departments = departments
        self.policy = policy or ApprovalPolicy()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def determine_approval_level(self, amount: Money | Decimal) -> ApprovalRequirement:
        """Step function over the policy thresholds; boundaries are inclusive."""
        value = amount.amount if isinstance(amount, Money) else amount

        if value <= self.policy.level1_threshold:
            level = 1
        elif value <= self.policy.level2_threshold:
            level = 2
        else:
            level = 3
        level = min(level, self.policy.max_level)

        logger.debug("Amount %s requires level %d approval", value, level)
        return ApprovalRequirement(required_level=level, label=LEVEL_LABELS.get(level, f"Level {level}"))

    def requires_next_level_approval(self, amount: Money | Decimal, current_level: int) -> bool:
        return current_level < self.determine_approval_level(amount).required_level

    async def get_approver_for_level(self, level: int, department_id: UUID) -> UUID | None:
        department = await self.departments.get(department_id)
        if department is None:
            logger.warning("Department %s not found", department_id)
            return None

        if level == 1:
            approver = department.manager_id
        elif level == 2:
            approver = await self._parent_manager(department)
        elif level == 3:
            approver = await self._top_level_manager(department_id)
        else:
            return None

        if approver is None:
            logger.warning(
                "No manager resolvable for level %d from department %s", level, department_id
            )
        return approver

    async def get_next_level_approver(self, current_level: int, department_id: UUID) -> UUID | None:
        next_level = current_level + 1
        if next_level > self.policy.max_level:
            return None
        return await self.get_approver_for_level(next_level, department_id)

    async def get_escalation_target(
        self, current_approver_id: UUID, current_level: int, department_id: UUID
    ) -> UUID | None:
        """Parent department's manager, unless that is the current approver.

        Falls back to the next level's approver. The order avoids routing an
        approval back to the person it is escalating away from.
        """
        department = await self.departments.get(department_id)
        if department is not None and department.parent_id is not None:
            parent_manager = await self._parent_manager(department)
            if parent_manager is not None and parent_manager != current_approver_id:
                return parent_manager

        return await self.get_next_level_approver(current_level, department_id)

    def calculate_expiration_time(self, level: int, submitted_at: datetime | None = None) -> datetime:
        """Deadline for an approval created at ``submitted_at``.

        Higher levels get shorter windows.
        """
        start = submitted_at or self._clock()
        return start + timedelta(hours=self.policy.sla_for_level(level))

    async def assignment_for_level(
        self, level: int, department_id: UUID, submitted_at: datetime | None = None
    ) -> ApproverAssignment | None:
        approver = await self.get_approver_for_level(level, department_id)
        if approver is None:
            return None
        return ApproverAssignment(
            approver_id=approver,
            level=level,
            expires_at=self.calculate_expiration_time(level, submitted_at),
        )

    def now(self) -> datetime:
        return self._clock()

    async def _parent_manager(self, department: Department) -> UUID | None:
        if department.parent_id is None:
            return None
        parent = await self.departments.get(department.parent_id)
        if parent is None:
            logger.warning("Parent department %s not found", department.parent_id)
            return None
        return parent.manager_id

    async def _top_level_manager(self, department_id: UUID) -> UUID | None:
        hierarchy = await self.departments.get_hierarchy(department_id)
        if not hierarchy:
            return None
        return hierarchy[-1].manager_id
