"""Tests for value-based approval routing."""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from incentive_engine.config import ApprovalPolicy
from incentive_engine.domain.organization import Department
from incentive_engine.persistence.memory import InMemoryDepartmentRepository
from incentive_engine.services.approval_workflow import (
    ApprovalWorkflowEngine,
    CachedDepartmentDirectory,
)

from tests.conftest import NOW, inr

pytestmark = pytest.mark.asyncio


class CountingDepartments:
    """Department repository that counts lookups."""

    def __init__(self, inner):
        self.inner = inner
        self.gets = 0
        self.hierarchies = 0

    async def get(self, department_id):
        self.gets += 1
        return await self.inner.get(department_id)

    async def get_hierarchy(self, department_id):
        self.hierarchies += 1
        return await self.inner.get_hierarchy(department_id)


class TestDetermineApprovalLevel:
    """Thresholds are inclusive: 50,000 and 200,000 stay at the lower level."""

    @pytest.mark.parametrize(
        "amount, expected",
        [
            ("0", 1),
            ("50000", 1),
            ("50000.01", 2),
            ("200000", 2),
            ("200000.01", 3),
            ("5000000", 3),
        ],
    )
    async def test_level_for_amount(self, workflow, amount, expected):
        assert workflow.determine_approval_level(Decimal(amount)).required_level == expected

    async def test_accepts_money(self, workflow):
        requirement = workflow.determine_approval_level(inr("75000"))
        assert requirement.required_level == 2
        assert requirement.label == "Director"

    async def test_level_capped_by_policy(self, store, clock):
        policy = ApprovalPolicy(sla_hours=(72, 48), max_level=2)
        workflow = ApprovalWorkflowEngine(InMemoryDepartmentRepository(store), policy, clock)
        assert workflow.determine_approval_level(Decimal("900000")).required_level == 2

    async def test_requires_next_level(self, workflow):
        assert workflow.requires_next_level_approval(Decimal("75000"), 1) is True
        assert workflow.requires_next_level_approval(Decimal("75000"), 2) is False


class TestApproverResolution:
    """Approvers are found by walking up the department tree."""

    async def test_level_one_is_department_manager(self, workflow, org):
        approver = await workflow.get_approver_for_level(1, org.team.department_id)
        assert approver == org.manager_id

    async def test_level_two_is_parent_manager(self, workflow, org):
        approver = await workflow.get_approver_for_level(2, org.team.department_id)
        assert approver == org.director_id

    async def test_level_three_is_root_manager(self, workflow, org):
        approver = await workflow.get_approver_for_level(3, org.team.department_id)
        assert approver == org.vp_id

    async def test_unknown_department(self, workflow):
        assert await workflow.get_approver_for_level(1, uuid4()) is None

    async def test_root_has_no_level_two(self, workflow, org):
        assert await workflow.get_approver_for_level(2, org.root.department_id) is None

    async def test_department_without_manager(self, store, workflow, org):
        orphan = Department(code="OPS", name="Operations", parent_id=org.root.department_id)
        store.add_department(orphan)
        assert await workflow.get_approver_for_level(1, orphan.department_id) is None

    async def test_unsupported_level(self, workflow, org):
        assert await workflow.get_approver_for_level(4, org.team.department_id) is None

    async def test_next_level_approver(self, workflow, org):
        assert await workflow.get_next_level_approver(1, org.team.department_id) == org.director_id
        assert await workflow.get_next_level_approver(3, org.team.department_id) is None

    async def test_assignment_for_level(self, workflow, org):
        assignment = await workflow.assignment_for_level(2, org.team.department_id, NOW)
        assert assignment.approver_id == org.director_id
        assert assignment.level == 2
        assert assignment.expires_at == NOW + timedelta(hours=48)

    async def test_assignment_unresolvable(self, workflow):
        assert await workflow.assignment_for_level(1, uuid4(), NOW) is None


class TestEscalationTarget:
    async def test_parent_manager_first(self, workflow, org):
        target = await workflow.get_escalation_target(org.manager_id, 1, org.team.department_id)
        assert target == org.director_id

    async def test_skips_current_approver(self, workflow, org):
        """When the parent manager already holds the approval, go one level up."""
        target = await workflow.get_escalation_target(org.director_id, 2, org.team.department_id)
        assert target == org.vp_id

    async def test_nothing_above_top_level(self, workflow, org):
        target = await workflow.get_escalation_target(org.vp_id, 3, org.root.department_id)
        assert target is None


class TestExpiration:
    """Higher levels get shorter SLA windows."""

    @pytest.mark.parametrize("level, hours", [(1, 72), (2, 48), (3, 24)])
    async def test_window_per_level(self, workflow, level, hours):
        assert workflow.calculate_expiration_time(level, NOW) == NOW + timedelta(hours=hours)

    async def test_defaults_to_clock(self, workflow, clock):
        clock.advance(hours=5)
        assert workflow.calculate_expiration_time(1) == NOW + timedelta(hours=77)

    async def test_unknown_level_uses_level_one_window(self, workflow):
        assert workflow.calculate_expiration_time(9, NOW) == NOW + timedelta(hours=72)


class TestCachedDepartmentDirectory:
    """Department lookups are cached for a bounded time."""

    @pytest.fixture
    def counting(self, store):
        return CountingDepartments(InMemoryDepartmentRepository(store))

    async def test_repeated_lookups_hit_cache(self, counting, org):
        ticks = [0.0]
        directory = CachedDepartmentDirectory(counting, ttl_seconds=300, clock=lambda: ticks[0])

        first = await directory.get(org.team.department_id)
        second = await directory.get(org.team.department_id)

        assert first == second == org.team
        assert counting.gets == 1

    async def test_entries_expire(self, counting, org):
        ticks = [0.0]
        directory = CachedDepartmentDirectory(counting, ttl_seconds=300, clock=lambda: ticks[0])

        await directory.get(org.team.department_id)
        ticks[0] = 301.0
        await directory.get(org.team.department_id)

        assert counting.gets == 2

    async def test_hierarchy_cached(self, counting, org):
        directory = CachedDepartmentDirectory(counting, clock=lambda: 0.0)
        chain = await directory.get_hierarchy(org.team.department_id)
        await directory.get_hierarchy(org.team.department_id)
        assert [d.code for d in chain] == ["SALES-N", "SALES", "HQ"]
        assert counting.hierarchies == 1

    async def test_invalidate(self, counting, org):
        directory = CachedDepartmentDirectory(counting, clock=lambda: 0.0)
        await directory.get(org.team.department_id)
        directory.invalidate(org.team.department_id)
        await directory.get(org.team.department_id)
        assert counting.gets == 2

    async def test_workflow_over_cache(self, counting, org, clock):
        """The workflow engine accepts the cache as its department source."""
        directory = CachedDepartmentDirectory(counting, clock=lambda: 0.0)
        workflow = ApprovalWorkflowEngine(directory, ApprovalPolicy(), clock)

        for _ in range(3):
            assert await workflow.get_approver_for_level(1, org.team.department_id) == org.manager_id

        assert counting.gets == 1

    async def test_missing_department_is_cached(self, counting):
        directory = CachedDepartmentDirectory(counting, clock=lambda: 0.0)
        unknown = uuid4()
        assert await directory.get(unknown) is None
        assert await directory.get(unknown) is None
        assert counting.gets == 1

