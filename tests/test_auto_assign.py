"""
Unit tests for the auto-assignment engine against an in-memory backend.
Run: pytest tests/test_auto_assign.py -v
"""

import asyncio
import threading
from datetime import timedelta

import pytest

from ticket_dispatch.errors import DispatchConflictError, ZammadError
from ticket_dispatch.models import Agent
from ticket_dispatch.services.auto_assign import AutoAssigner, ensure_dispatchable, no_agents_error
from tests.fakes import NOW, SYSTEM_USER, FakeBackend, agent, ticket

DAY = timedelta(days=1)
EXCLUDED = frozenset({"support@howentech.com", "howensupport@howentech.com"})


def _assigner(backend, **kwargs):
    kwargs.setdefault("excluded_emails", EXCLUDED)
    kwargs.setdefault("unassigned_owner_id", SYSTEM_USER)
    return AutoAssigner(backend, clock=lambda: NOW, **kwargs)


def _assign(backend, ticket_id=100, group_id=5, **kwargs):
    return asyncio.run(_assigner(backend, **kwargs).auto_assign_single_ticket(ticket_id, "T100", "Printer on fire", group_id))


class TestScenarios:
    """Two agents in group 5, one of them busier."""

    def _backend(self, **agent2):
        agents = [
            Agent(id=1, email="a@x", role_ids=[2], group_ids={5: ["full"]}),
            Agent(id=2, email="b@x", role_ids=[2], group_ids={5: ["full"]}, **agent2),
        ]
        return FakeBackend(agents=agents, tickets=[ticket(10, owner_id=1), ticket(11, owner_id=1, state_id=1)])

    def test_less_loaded_agent_wins(self):
        backend = self._backend()
        result = _assign(backend)
        assert result.success is True
        assert result.assigned_to.id == 2
        assert backend.updates == [(100, {"owner_id": 2, "state_id": 2})]

    def test_vacationing_agent_is_skipped_despite_lower_load(self):
        backend = self._backend(out_of_office=True, out_of_office_start_at=NOW - DAY, out_of_office_end_at=NOW + DAY)
        result = _assign(backend)
        assert result.assigned_to.id == 1
        assert backend.updates == [(100, {"owner_id": 1, "state_id": 2})]


class TestUnassignedOwner:
    def test_tickets_owned_by_system_user_do_not_count(self):
        backend = FakeBackend(
            agents=[agent(1, 5), agent(2, 5)],
            tickets=[ticket(10, owner_id=SYSTEM_USER), ticket(11, owner_id=SYSTEM_USER), ticket(12, owner_id=1)],
        )
        assert _assign(backend).assigned_to.id == 2

    def test_system_user_account_is_never_selected(self):
        backend = FakeBackend(
            agents=[agent(SYSTEM_USER, 5), agent(2, 5)],
            tickets=[ticket(10, owner_id=2), ticket(11, owner_id=2)],
        )
        result = _assign(backend)
        assert result.assigned_to.id == 2
        assert backend.updates == [(100, {"owner_id": 2, "state_id": 2})]

    def test_only_system_user_in_group_means_no_assignment(self):
        backend = FakeBackend(agents=[agent(SYSTEM_USER, 5)])
        result = _assign(backend)
        assert result.success is False
        assert backend.updates == []


class TestSingleTicket:
    def test_least_loaded_agent_in_group_is_assigned(self):
        backend = FakeBackend(
            agents=[agent(1, 5), agent(2, 5), agent(3, 2)],
            tickets=[ticket(10, owner_id=1), ticket(11, owner_id=1, state_id=3)],
        )
        result = _assign(backend)
        assert result.success is True
        assert result.assigned_to.id == 2
        assert result.assigned_to.name == "Agent2 Test"
        assert result.assigned_to.email == "agent2@example.com"
        assert result.error is None
        assert backend.updates == [(100, {"owner_id": 2, "state_id": 2})]

    def test_vacation_sends_ticket_to_busier_agent(self):
        backend = FakeBackend(
            agents=[
                agent(1, 5),
                agent(2, 5, out_of_office=True, out_of_office_start_at=NOW - DAY, out_of_office_end_at=NOW + DAY),
            ],
            tickets=[ticket(10, owner_id=1), ticket(11, owner_id=1)],
        )
        result = _assign(backend)
        assert result.assigned_to.id == 1
        assert backend.updates == [(100, {"owner_id": 1, "state_id": 2})]

    def test_no_eligible_agent_means_no_update(self):
        backend = FakeBackend(agents=[agent(1, 2), agent(2, 5, roles=(1, 2))])
        result = _assign(backend)
        assert result.success is False
        assert result.assigned_to is None
        assert result.error == "No available agents for region: cis"
        assert backend.updates == []

    def test_excluded_mailbox_never_assigned(self):
        backend = FakeBackend(agents=[agent(1, 5, email="SUPPORT@howentech.com"), agent(2, 5)],
                              tickets=[ticket(10, owner_id=2)])
        assert _assign(backend).assigned_to.id == 2

    def test_custom_exclusion_list(self):
        backend = FakeBackend(agents=[agent(1, 5), agent(2, 5)])
        result = _assign(backend, excluded_emails=frozenset({"AGENT1@example.com"}))
        assert result.assigned_to.id == 2

    def test_tie_goes_to_backend_order(self):
        backend = FakeBackend(
            agents=[agent(1, 5), agent(2, 5), agent(3, 5)],
            tickets=[ticket(i, owner_id=1) for i in range(3)] + [ticket(3, owner_id=2), ticket(4, owner_id=3)],
        )
        assert _assign(backend).assigned_to.id == 2

    def test_closed_tickets_do_not_count(self):
        backend = FakeBackend(
            agents=[agent(1, 5), agent(2, 5)],
            tickets=[ticket(i, owner_id=1, state_id=4) for i in range(5)] + [ticket(9, owner_id=2)],
        )
        assert _assign(backend).assigned_to.id == 1

    def test_start_only_vacation_excludes(self):
        backend = FakeBackend(agents=[
            agent(1, 5, out_of_office=True, out_of_office_start_at=NOW - 30 * DAY),
            agent(2, 5),
        ], tickets=[ticket(10, owner_id=2)])
        assert _assign(backend).assigned_to.id == 2

    def test_end_only_vacation_excludes_until_end(self):
        backend = FakeBackend(agents=[
            agent(1, 5, out_of_office=True, out_of_office_end_at=NOW + DAY),
            agent(2, 5),
        ], tickets=[ticket(10, owner_id=2)])
        assert _assign(backend).assigned_to.id == 2

    def test_injected_lifecycle(self):
        class ClosedCounts:
            def get_active_state_ids(self):
                return [4]

        backend = FakeBackend(
            agents=[agent(1, 5), agent(2, 5)],
            tickets=[ticket(10, owner_id=1, state_id=4), ticket(11, owner_id=2, state_id=4),
                     ticket(12, owner_id=2, state_id=4)],
        )
        assert _assign(backend, lifecycle=ClosedCounts()).assigned_to.id == 1

    def test_backend_errors_propagate(self):
        backend = FakeBackend(agents=[agent(1, 5)], fail_reads=True)
        with pytest.raises(ZammadError):
            _assign(backend)
        assert backend.updates == []

    def test_update_error_propagates(self):
        backend = FakeBackend(agents=[agent(1, 5)], fail_updates_for={100})
        with pytest.raises(ZammadError):
            _assign(backend)

    def test_unknown_group_error_message(self):
        assert no_agents_error(9) == "No available agents for region: unknown"
        result = _assign(FakeBackend(agents=[agent(1, 5)]), group_id=9)
        assert result.error == "No available agents for region: unknown"


class TestSweep:
    def test_nothing_to_do(self):
        backend = FakeBackend(agents=[agent(1, 5)], tickets=[ticket(1, owner_id=2)])
        report = asyncio.run(_assigner(backend).auto_assign_unassigned())
        assert report.message == "No unassigned tickets found"
        assert report.processed == 0
        assert backend.updates == []

    def test_sweep_spreads_load(self):
        backend = FakeBackend(
            agents=[agent(1, 5), agent(2, 5)],
            tickets=[ticket(1), ticket(2, owner_id=1), ticket(3)],
        )
        report = asyncio.run(_assigner(backend).auto_assign_unassigned())
        assert report.processed == 2
        assert report.success == 2 and report.failed == 0
        assert backend.updates == [(1, {"owner_id": 2, "state_id": 2}), (3, {"owner_id": 1, "state_id": 2})]
        assert report.message == "Auto-assignment completed: 2 assigned, 0 failed"

    def test_system_owner_counts_as_unassigned_and_closed_skipped(self):
        backend = FakeBackend(
            agents=[agent(2, 5)],
            tickets=[ticket(1, owner_id=SYSTEM_USER), ticket(2, state_id=4), ticket(3, state_id=3)],
        )
        report = asyncio.run(_assigner(backend).auto_assign_unassigned())
        assert [r.ticket_id for r in report.results] == [1]

    def test_failures_are_reported_per_ticket(self):
        backend = FakeBackend(
            agents=[agent(2, 5)],
            tickets=[ticket(1), ticket(2, group_id=3), ticket(3, group_id=None), ticket(4)],
            fail_updates_for={4},
        )
        report = asyncio.run(_assigner(backend).auto_assign_unassigned())
        assert report.processed == 4
        assert report.success == 1 and report.failed == 3
        errors = {r.ticket_id: r.error for r in report.results}
        assert errors[1] is None
        assert errors[2] == "No available agents for region: middle-east"
        assert errors[3] == "No available agents for region: unknown"
        assert errors[4] == "Ticket is locked"


class TestSummary:
    def test_groups_by_region(self):
        backend = FakeBackend(tickets=[
            ticket(1, group_id=5), ticket(2, group_id=5), ticket(3, group_id=9),
            ticket(4, group_id=2, owner_id=7), ticket(5, group_id=2, state_id=4),
        ])
        summary = asyncio.run(_assigner(backend).unassigned_summary())
        assert summary.total_unassigned == 3
        assert summary.by_region == {"cis": 2, "Group 9": 1}
        assert [t.id for t in summary.tickets] == [1, 2, 3]


class _LockstepBackend(FakeBackend):
    """Both dispatches must finish reading tickets before either one writes."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, apply_updates=True, **kwargs)
        self.barrier = threading.Barrier(2, timeout=5)

    def get_all_tickets(self, on_behalf_of=None):
        tickets = super().get_all_tickets()
        self.barrier.wait()
        return tickets


class TestConcurrentDispatch:
    def test_concurrent_dispatches_can_pick_the_same_agent(self):
        # No locking between read and write: both see agent 2 at load 0.
        backend = _LockstepBackend(agents=[agent(1, 5), agent(2, 5)], tickets=[ticket(10, owner_id=1)])
        assigner = _assigner(backend)

        async def both():
            return await asyncio.gather(
                assigner.auto_assign_single_ticket(100, "T100", "first", 5),
                assigner.auto_assign_single_ticket(101, "T101", "second", 5),
            )

        first, second = asyncio.run(both())
        assert first.assigned_to.id == 2
        assert second.assigned_to.id == 2
        assert sorted(backend.updates) == [(100, {"owner_id": 2, "state_id": 2}), (101, {"owner_id": 2, "state_id": 2})]

    def test_sequential_dispatches_see_previous_assignment(self):
        backend = FakeBackend(agents=[agent(1, 5), agent(2, 5)], tickets=[ticket(10, owner_id=1)], apply_updates=True)
        assigner = _assigner(backend)
        first = asyncio.run(assigner.auto_assign_single_ticket(100, "T100", "first", 5))
        second = asyncio.run(assigner.auto_assign_single_ticket(101, "T101", "second", 5))
        assert (first.assigned_to.id, second.assigned_to.id) == (2, 1)


class TestEnsureDispatchable:
    def test_new_unowned_ticket_passes(self):
        ensure_dispatchable(ticket(1, state_id=1, group_id=5), 5, SYSTEM_USER)
        ensure_dispatchable(ticket(1, owner_id=SYSTEM_USER, state_id=1, group_id=5), 5, SYSTEM_USER)

    def test_group_mismatch(self):
        with pytest.raises(DispatchConflictError) as exc:
            ensure_dispatchable(ticket(1, state_id=1, group_id=4), 5, SYSTEM_USER)
        assert exc.value.status_code == 409

    def test_owned_ticket_is_not_taken_over(self):
        with pytest.raises(DispatchConflictError, match="already assigned"):
            ensure_dispatchable(ticket(1, owner_id=3, state_id=1, group_id=5), 5, SYSTEM_USER)

    def test_closed_ticket_is_not_reopened(self):
        with pytest.raises(DispatchConflictError, match="not new"):
            ensure_dispatchable(ticket(1, state_id=4, group_id=5), 5, SYSTEM_USER)

    def test_check_dispatchable_reads_backend(self):
        backend = FakeBackend(tickets=[ticket(55, owner_id=3, state_id=4, group_id=4)])
        with pytest.raises(DispatchConflictError):
            asyncio.run(_assigner(backend).check_dispatchable(55, 4))
        assert backend.updates == []
