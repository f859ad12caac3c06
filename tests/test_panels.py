"""Tests for the canton and persona permission panels and the persona editor."""

import pytest

from gestion_permisos.bus import SyncEvent
from gestion_permisos.constants.sync import (
    CANTON_PERMISSIONS_UPDATED,
    PERMISSIONS_DELETED,
    PERSONA_PERMISSIONS_UPDATED,
)
from gestion_permisos.models import CantonCapabilities
from gestion_permisos.monitor import OrphanGrantMonitor
from gestion_permisos.notifications import NotificationLevel
from gestion_permisos.panels import CantonPermissionsPanel, PersonaPermissionsPanel
from gestion_permisos.reconciler import CandidateState


@pytest.fixture
def canton_panel(store, bus):
    panel = CantonPermissionsPanel(store, bus)
    panel.mount()
    yield panel
    panel.unmount()


@pytest.fixture
def persona_panel(store, bus):
    panel = PersonaPermissionsPanel(store, bus)
    panel.mount()
    yield panel
    panel.unmount()


def levels(panel):
    return [item.level for item in panel.notifications.items]


class TestCantonPermissionsPanel:
    @pytest.mark.asyncio
    async def test_revoking_canton_cascades_to_personas(self, store, bus, canton_panel, persona_panel):
        assert await canton_panel.assign("100", ["1"], CantonCapabilities(view=True))
        assert store.persona_rows == []

        assert await persona_panel.assign("100", ["10"], "1", view_specific=True, manage_all=False)
        assert len(store.persona_rows) == 1

        assert await canton_panel.revoke_canton("100", "1")
        await bus.drain()

        assert store.persona_rows == []
        assert canton_panel.cards == []
        assert persona_panel.cards == []

    @pytest.mark.asyncio
    async def test_assign_always_grants_view(self, store, canton_panel):
        await canton_panel.assign("100", ["1", "2", "1"], CantonCapabilities(edit=True))

        card = canton_panel.card_for("100")
        assert card.canton_ids == ["1", "2"]
        assert card.capabilities.view is True
        assert card.capabilities.edit is True
        assert store.calls_to("assign_canton_grants")[0][1] == ["1", "2"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("user_id, cantons", [(None, ["1"]), ("100", [])])
    async def test_validation_runs_before_any_call(self, store, canton_panel, user_id, cantons):
        assert not await canton_panel.assign(user_id, cantons, CantonCapabilities(view=True))

        assert store.calls == []
        error = canton_panel.notifications.last_error
        assert error.status_code == 422
        assert canton_panel.saving is False

    @pytest.mark.asyncio
    async def test_edit_revokes_updates_and_adds(self, store, canton_panel):
        store.seed_canton_grant("100", "1")
        store.seed_canton_grant("100", "2")
        store.seed_persona_grant("100", "10")
        kept = store.seed_persona_grant("100", "20")

        assert await canton_panel.edit("100", ["2", "3"], CantonCapabilities(view=True, edit=True))

        assert canton_panel.card_for("100").canton_ids == ["2", "3"]
        assert [row["id"] for row in store.persona_rows] == [kept["id"]]
        assert (kept["canView"], kept["canCreate"], kept["canEdit"]) == (True, True, True)
        assert levels(canton_panel) == [NotificationLevel.SUCCESS]

    @pytest.mark.asyncio
    async def test_edit_publishes_update_and_delete(self, store, bus, canton_panel):
        store.seed_canton_grant("100", "1")
        events = []
        bus.subscribe(events.append)

        await canton_panel.edit("100", ["2"], CantonCapabilities(view=True))

        assert [(e.action, e.canton_ids) for e in events] == [
            (CANTON_PERMISSIONS_UPDATED, ("2",)),
            (PERMISSIONS_DELETED, ("1",)),
        ]
        assert all(e.detail["source"] == canton_panel.panel_id for e in events)

    @pytest.mark.asyncio
    async def test_edit_keeps_view_on(self, store, canton_panel):
        store.seed_canton_grant("100", "1")

        assert await canton_panel.edit("100", ["1"], CantonCapabilities(view=False, edit=True))

        assert canton_panel.card_for("100").capabilities.view is True
        assert store.calls_to("assign_canton_grants")[0][2].view is True

    @pytest.mark.asyncio
    async def test_edit_publishes_revocations_when_persona_sync_fails(self, store, bus, canton_panel):
        store.seed_canton_grant("100", "1")
        store.seed_canton_grant("100", "2")
        store.seed_persona_grant("100", "10", "1")
        store.fail("list_persona_grants")
        events = []
        bus.subscribe(events.append)

        assert not await canton_panel.edit("100", ["2"], CantonCapabilities(view=True))

        assert [row["cantonId"] for row in store.canton_rows] == ["2"]
        assert [(e.action, e.canton_ids) for e in events] == [
            (CANTON_PERMISSIONS_UPDATED, ("2",)),
            (PERMISSIONS_DELETED, ("1",)),
        ]
        error = canton_panel.notifications.last_error
        assert error.status_code == 502
        assert "2 failed" in error.message

        store.recover("list_persona_grants")
        orphans = await OrphanGrantMonitor(store, revoke=True).sweep()

        assert [(grant.persona_id, grant.canton_id) for grant in orphans] == [("10", "1")]
        assert store.persona_rows == []

    @pytest.mark.asyncio
    async def test_revoke_user_reports_partial_failure(self, store, canton_panel):
        store.seed_canton_grant("100", "1")
        store.seed_canton_grant("100", "2")
        stuck = store.seed_persona_grant("100", "10")
        store.seed_persona_grant("100", "20")
        store.fail("revoke_persona_grant", stuck["id"])

        assert not await canton_panel.revoke_user("100")

        assert store.canton_rows == []
        assert store.persona_rows == [stuck]
        error = canton_panel.notifications.last_error
        assert error.status_code == 502
        assert "1 failed" in error.message

    @pytest.mark.asyncio
    async def test_revoke_user_without_grants(self, store, canton_panel):
        assert not await canton_panel.revoke_user("100")

        assert store.calls_to("revoke_canton_grant") == []
        assert canton_panel.notifications.last_error.status_code == 422

    @pytest.mark.asyncio
    async def test_results_after_unmount_are_dropped(self, store, canton_panel):
        store.seed_canton_grant("100", "1")
        canton_panel.unmount()

        cards = await canton_panel.load()
        store.fail("list_canton_grants")
        await canton_panel.load()

        assert len(cards) == 1
        assert canton_panel.cards == []
        assert canton_panel.notifications.items == []

    @pytest.mark.asyncio
    async def test_load_failure_becomes_notification(self, store, canton_panel):
        store.fail("list_canton_grants")

        assert await canton_panel.load() == []

        assert canton_panel.notifications.last_error.status_code == 502
        assert canton_panel.loading is False


class TestPersonaPermissionsPanel:
    @pytest.mark.asyncio
    async def test_reloads_on_foreign_bus_event(self, store, bus, persona_panel):
        store.seed_persona_grant("100", "10")

        bus.publish({"action": CANTON_PERMISSIONS_UPDATED, "userId": "100"})
        await bus.drain()

        assert store.calls_to("list_persona_grants") == [(True,)]
        assert persona_panel.card_for("100").persona_ids == ["10"]

    @pytest.mark.asyncio
    async def test_ignores_its_own_events(self, store, bus, persona_panel):
        persona_panel.publish(PERSONA_PERMISSIONS_UPDATED, "100")
        await bus.drain()

        assert store.calls == []

    @pytest.mark.asyncio
    async def test_unmounted_panel_stops_listening(self, store, bus, persona_panel):
        persona_panel.unmount()

        bus.publish(SyncEvent(PERMISSIONS_DELETED, "100"))
        await bus.drain()

        assert store.calls == []

    @pytest.mark.asyncio
    async def test_assign_requires_canton_grant(self, store, persona_panel):
        assert not await persona_panel.assign("100", ["10"], view_specific=True, manage_all=False)

        error = persona_panel.notifications.last_error
        assert error.status_code == 422
        assert "Assign cantones" in error.message
        assert store.calls_to("assign_persona_grants") == []

    @pytest.mark.asyncio
    async def test_assign_rejects_canton_not_held(self, store, persona_panel):
        store.seed_canton_grant("100", "1")

        assert not await persona_panel.assign("100", ["20"], "2", view_specific=True, manage_all=False)
        assert store.calls_to("assign_persona_grants") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "personas, view_specific, manage_all",
        [([], True, False), (["10"], False, False)],
    )
    async def test_assign_form_validation(self, store, persona_panel, personas, view_specific, manage_all):
        assert not await persona_panel.assign(
            "100", personas, "1", view_specific=view_specific, manage_all=manage_all
        )

        assert store.calls == []

    @pytest.mark.asyncio
    async def test_manage_all_without_personas_covers_canton(self, store, persona_panel):
        store.seed_canton_grant("100", "1")

        assert await persona_panel.assign("100", [], view_specific=False, manage_all=True)

        user_id, persona_ids, canton_id, caps = store.calls_to("assign_persona_grants")[0]
        assert persona_ids == ["10", "11"]
        assert canton_id == "1"
        assert (caps.can_view, caps.can_create, caps.can_edit) == (False, True, True)
        assert persona_panel.card_for("100").can_manage is True

    @pytest.mark.asyncio
    async def test_revoke_user_removes_all_persona_grants(self, store, persona_panel):
        store.seed_persona_grant("100", "10")
        store.seed_persona_grant("100", "20")
        store.seed_persona_grant("200", "10")

        assert await persona_panel.revoke_user("100")

        assert [row["userId"] for row in store.persona_rows] == ["200"]

    @pytest.mark.asyncio
    async def test_revoke_missing_grant_reports_not_found(self, store, persona_panel):
        assert not await persona_panel.revoke("pg-404")

        assert persona_panel.notifications.last_error.status_code == 404


class TestPersonaAssignmentSession:
    @pytest.mark.asyncio
    async def test_refuses_to_open_without_cantons(self, store, persona_panel):
        assert await persona_panel.open_editor("100") is None

        assert persona_panel.notifications.last_error.status_code == 422

    @pytest.mark.asyncio
    async def test_open_loads_candidates_and_states(self, store, persona_panel):
        store.seed_canton_grant("100", "1")
        store.seed_persona_grant("100", "10")

        session = await persona_panel.open_editor("100")

        assert session.is_open
        assert session.eligible_canton_ids == ["1"]
        assert session.canton_id == "1"
        assert [p.id for p in session.candidates] == ["10", "11"]
        assert session.state_of("10") is CandidateState.ASSIGNED
        assert session.state_of("11") is CandidateState.UNASSIGNED
        assert session.view_specific is True
        assert session.manage_all is False

    @pytest.mark.asyncio
    async def test_save_applies_diff_and_reloads(self, store, bus, persona_panel):
        store.seed_canton_grant("100", "1")
        store.seed_persona_grant("100", "10")
        events = []
        bus.subscribe(events.append)
        session = await persona_panel.open_editor("100")

        assert session.toggle("11") is CandidateState.PENDING_ADD
        assert session.toggle("10") is CandidateState.PENDING_REMOVE
        result = await session.save()

        assert result.ok
        assert result.added == ["11"]
        assert result.removed == ["10"]
        assert [row["personaId"] for row in store.persona_rows] == ["11"]
        assert session.reconciler.selected == frozenset()
        assert session.reconciler.assigned == {"11"}
        assert [e.action for e in events] == [PERSONA_PERMISSIONS_UPDATED]
        assert store.calls_to("revoke_persona_grant_for_user") == [("100", "10")]

    @pytest.mark.asyncio
    async def test_save_updates_flags_on_kept_grants(self, store, persona_panel):
        store.seed_canton_grant("100", "1")
        row = store.seed_persona_grant("100", "10")
        session = await persona_panel.open_editor("100")

        result = await session.save(view_specific=True, manage_all=True)

        assert result.updated_grants == 1
        assert (row["canView"], row["canCreate"], row["canEdit"]) == (True, True, True)
        assert session.manage_all is True

    @pytest.mark.asyncio
    async def test_failed_removal_is_reported(self, store, persona_panel):
        store.seed_canton_grant("100", "1")
        store.seed_persona_grant("100", "10")
        store.fail("revoke_persona_grant_for_user", "100")
        session = await persona_panel.open_editor("100")

        session.toggle("10")
        result = await session.save()

        assert result.failures == ["10"]
        assert persona_panel.notifications.last_error.status_code == 502

    @pytest.mark.asyncio
    async def test_changing_canton_drops_pending_marks(self, store, persona_panel):
        store.seed_canton_grant("100", "1")
        store.seed_canton_grant("100", "2")
        session = await persona_panel.open_editor("100")
        session.toggle("10")

        assert await session.select_canton("2")
        assert session.state_of("10") is CandidateState.UNASSIGNED
        assert session.pending_add_count == 0

        result = await session.save()

        assert result.added == []
        assert store.persona_rows == []
        assert store.calls_to("assign_persona_grants") == []

    @pytest.mark.asyncio
    async def test_reselecting_same_canton_keeps_marks(self, store, persona_panel):
        store.seed_canton_grant("100", "1")
        session = await persona_panel.open_editor("100")
        session.toggle("11")

        assert await session.select_canton("1")

        assert session.state_of("11") is CandidateState.PENDING_ADD

    @pytest.mark.asyncio
    async def test_failed_assign_keeps_completed_removals(self, store, bus, persona_panel):
        store.seed_canton_grant("100", "1")
        store.seed_persona_grant("100", "10", "1")
        events = []
        bus.subscribe(events.append)
        session = await persona_panel.open_editor("100")
        session.toggle("10")
        session.toggle("11")
        store.fail("assign_persona_grants")

        assert await session.save() is None

        assert store.persona_rows == []
        assert session.reconciler.assigned == frozenset()
        assert session.reconciler.selected == frozenset()
        assert session.state_of("10") is CandidateState.UNASSIGNED
        assert [e.action for e in events] == [PERSONA_PERMISSIONS_UPDATED]
        assert persona_panel.notifications.last_error.status_code == 502

        store.recover("assign_persona_grants")
        session.toggle("11")
        result = await session.save()

        assert result.ok
        assert result.added == ["11"]
        assert result.removed == []
        assert store.calls_to("revoke_persona_grant_for_user") == [("100", "10")]

    @pytest.mark.asyncio
    async def test_failed_save_without_writes_keeps_selection(self, store, bus, persona_panel):
        store.seed_canton_grant("100", "1")
        events = []
        bus.subscribe(events.append)
        session = await persona_panel.open_editor("100")
        session.toggle("11")
        store.fail("assign_persona_grants")

        assert await session.save() is None

        assert session.state_of("11") is CandidateState.PENDING_ADD
        assert events == []

    @pytest.mark.asyncio
    async def test_select_canton_outside_grants(self, store, persona_panel):
        store.seed_canton_grant("100", "1")
        store.seed_canton_grant("100", "2")
        session = await persona_panel.open_editor("100")

        assert await session.select_canton("2")
        assert [p.id for p in session.candidates] == ["20"]
        assert not await session.select_canton("3")
        assert session.canton_id == "2"

    @pytest.mark.asyncio
    async def test_search_and_close(self, store, persona_panel):
        store.seed_canton_grant("100", "1")
        session = await persona_panel.open_editor("100")
        session.toggle("10")

        assert [p.id for p in session.search("jorge")] == ["11"]
        session.close()

        assert not session.is_open
        assert session.search_term == ""
        assert session.pending_add_count == 0
