"""
tests/test_users_updater.py — Identity Update Coordinator Tests
================================================================
Covers the sequential behaviour of ``UsersUpdater.update``: the mined
graffiti lock, duplicate handles, atomicity of rejected updates, and the
per-call deadline.

Uses an in-memory SQLite database via the shared conftest fixtures.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from tally.config import TallyConfig
from tally.services.blocks_service import BlocksService
from tally.services.results import (
    DuplicateAttribute,
    GraffitiLocked,
    StoreUnavailable,
    UpdateError,
    UpdateOk,
    UpdateOutcome,
    UserNotFound,
)
from tally.services.user_store import StoreUnavailableError, UniqueViolation, UserStore
from tally.services.users_updater import UpdateUserOptions, UsersUpdater

from conftest import NETWORK_VERSION, load_user, make_block, make_user


class TestGraffitiLock:
    """A graffiti with main-chain blocks cannot be changed."""

    def test_mined_graffiti_is_locked(self, db_engine, updater):
        user = make_user(db_engine, graffiti="g1")
        make_block(db_engine, "g1")

        result = updater.update(user, {"graffiti": "g2"})

        assert isinstance(result, GraffitiLocked)
        assert result.outcome is UpdateOutcome.GRAFFITI_LOCKED
        assert result.field == "graffiti"
        assert result.code == "user_graffiti_already_mined"
        assert load_user(db_engine, user.id).graffiti == "g1"

    def test_locked_update_leaves_other_handles_untouched(self, db_engine, updater):
        user = make_user(db_engine, graffiti="g1", discord="old-discord")
        make_block(db_engine, "g1")

        result = updater.update(user, {"graffiti": "g2", "discord": "new-discord"})

        assert not result.ok
        assert load_user(db_engine, user.id) == user

    def test_same_graffiti_skips_ledger_check(self, db_engine, updater):
        user = make_user(db_engine, graffiti="g1")
        make_block(db_engine, "g1")

        result = updater.update(user, {"graffiti": "g1", "telegram": "tg-1"})

        assert isinstance(result, UpdateOk)
        assert result.user.graffiti == "g1"
        assert result.user.telegram == "tg-1"

    def test_handle_changes_allowed_when_graffiti_not_requested(self, db_engine, updater):
        user = make_user(db_engine, graffiti="g1")
        make_block(db_engine, "g1")

        result = updater.update(user, {"discord": "d-1"})

        assert result.ok
        assert result.user.discord == "d-1"

    def test_orphaned_blocks_do_not_lock(self, db_engine, updater):
        user = make_user(db_engine, graffiti="g1")
        make_block(db_engine, "g1", main=False)

        result = updater.update(user, {"graffiti": "g2"})

        assert result.ok
        assert result.user.graffiti == "g2"

    def test_other_network_blocks_do_not_lock(self, db_engine, updater):
        user = make_user(db_engine, graffiti="g1")
        make_block(db_engine, "g1", network_version=NETWORK_VERSION + 1)

        result = updater.update(user, {"graffiti": "g2"})

        assert result.ok

    def test_blocks_under_proposed_graffiti_do_not_lock(self, db_engine, updater):
        """Only the CURRENT graffiti's blocks matter, not the proposed one's."""
        user = make_user(db_engine, graffiti="g1")
        make_block(db_engine, "g2")

        result = updater.update(user, {"graffiti": "g2"})

        assert result.ok

    def test_first_graffiti_is_never_locked(self, db_engine, updater):
        user = make_user(db_engine, graffiti=None)

        result = updater.update(user, {"graffiti": "first"})

        assert result.ok
        assert result.user.graffiti == "first"

    def test_lock_uses_stored_graffiti_not_stale_snapshot(self, db_engine, store, blocks):
        """The ledger check runs against the row as it is now."""
        user = make_user(db_engine, graffiti="g1")
        make_block(db_engine, "g1")
        stale = replace(user, graffiti="unmined")

        result = UsersUpdater(store, blocks).update(stale, {"graffiti": "g2"})

        assert isinstance(result, GraffitiLocked)
        assert result.graffiti == "g1"


class TestDuplicateHandles:
    """Another user already holds the requested handle."""

    @pytest.mark.parametrize("field", ["graffiti", "discord", "telegram"])
    def test_existing_handle_rejected(self, db_engine, updater, field):
        make_user(db_engine, **{field: "taken"})
        user = make_user(db_engine)

        result = updater.update(user, {field: "taken"})

        assert isinstance(result, DuplicateAttribute)
        assert result.field == field
        assert result.code == f"duplicate_user_{field}"
        assert "taken" in result.message
        assert load_user(db_engine, user.id) == user

    def test_first_colliding_field_reported(self, db_engine, updater):
        make_user(db_engine, discord="alice")
        make_user(db_engine, telegram="alice-tg")
        user = make_user(db_engine)

        result = updater.update(user, {"discord": "alice", "telegram": "alice-tg"})

        assert isinstance(result, DuplicateAttribute)
        assert result.field == "discord"

    def test_own_handle_is_not_a_duplicate(self, db_engine, updater):
        user = make_user(db_engine, discord="mine")

        result = updater.update(user, {"discord": "mine"})

        assert result.ok

    def test_unconfigured_field_skips_precheck_but_index_still_holds(self, db_engine):
        """With telegram left out of unique_fields the index still rejects it."""
        make_user(db_engine, telegram="dup")
        user = make_user(db_engine)
        updater = UsersUpdater.from_config(
            db_engine,
            TallyConfig(network_version=NETWORK_VERSION, unique_fields=("graffiti", "discord")),
        )

        result = updater.update(user, {"telegram": "dup"})

        assert isinstance(result, DuplicateAttribute)
        assert result.field == "telegram"
        assert result.value == "dup"
        assert load_user(db_engine, user.id) == user


class TestSuccessfulUpdate:
    def test_updates_all_handles(self, db_engine, updater):
        user = make_user(db_engine, total_points=42)

        result = updater.update(
            user, UpdateUserOptions(graffiti="g3", discord="d3", telegram="t3")
        )

        assert isinstance(result, UpdateOk)
        updated = result.user
        assert updated.id == user.id
        assert (updated.graffiti, updated.discord, updated.telegram) == ("g3", "d3", "t3")
        assert updated.email == user.email
        assert updated.country_code == user.country_code
        assert updated.total_points == 42

        stored = load_user(db_engine, user.id)
        assert (stored.graffiti, stored.discord, stored.telegram) == ("g3", "d3", "t3")

    def test_empty_values_are_not_requested(self, db_engine, updater):
        user = make_user(db_engine, discord="keep-me")

        result = updater.update(user, {"discord": "", "telegram": None, "graffiti": "new"})

        assert result.ok
        assert result.user.discord == "keep-me"
        assert result.user.telegram is None
        assert result.user.graffiti == "new"

    def test_no_changes_returns_current_row(self, db_engine, updater):
        user = make_user(db_engine)

        result = updater.update(user, {})

        assert result.ok
        assert result.user.graffiti == user.graffiti

    def test_unknown_attribute_rejected(self, db_engine, updater):
        user = make_user(db_engine)
        with pytest.raises(ValueError, match="total_points"):
            updater.update(user, {"total_points": "100"})

    def test_raise_for_error_returns_user(self, db_engine, updater):
        user = make_user(db_engine)
        updated = updater.update(user, {"discord": "d"}).raise_for_error()
        assert updated.discord == "d"

    def test_update_async(self, db_engine, updater):
        user = make_user(db_engine)

        result = asyncio.run(updater.update_async(user, {"telegram": "async-tg"}))

        assert result.ok
        assert result.user.telegram == "async-tg"


class TestFailures:
    def test_missing_user(self, db_engine, updater):
        user = make_user(db_engine)
        ghost = replace(user, id=user.id + 999)

        result = updater.update(ghost, {"discord": "x"})

        assert isinstance(result, UserNotFound)
        assert result.user_id == ghost.id
        with pytest.raises(UpdateError, match="user_not_found"):
            result.raise_for_error()

    def test_expired_deadline_rolls_back(self, db_engine, updater):
        user = make_user(db_engine)

        result = updater.update(user, {"discord": "late"}, timeout=0)

        assert isinstance(result, StoreUnavailable)
        assert result.retryable
        assert "deadline" in result.reason
        assert load_user(db_engine, user.id).discord is None

    def test_configured_timeout_is_default(self, db_engine, store, blocks):
        user = make_user(db_engine)
        updater = UsersUpdater(store, blocks, timeout=0)

        assert isinstance(updater.update(user, {"discord": "late"}), StoreUnavailable)
        assert updater.update(user, {"discord": "ok"}, timeout=None).ok

    def test_ledger_unavailable_is_reported(self, db_engine, store):
        from sqlalchemy.exc import OperationalError

        user = make_user(db_engine, graffiti="g1")
        ledger = MagicMock(spec=BlocksService)
        ledger.count_by_graffiti.side_effect = OperationalError(
            "SELECT count(*)", {}, Exception("server closed the connection")
        )

        result = UsersUpdater(store, ledger).update(user, {"graffiti": "g2"})

        assert isinstance(result, StoreUnavailable)
        assert "server closed" in result.reason
        assert load_user(db_engine, user.id).graffiti == "g1"

    def test_write_time_violation_is_classified(self, db_engine, blocks):
        """A racing writer that passed the pre-check is caught by the index."""
        make_user(db_engine, discord="raced")
        user = make_user(db_engine)
        store = UserStore(db_engine)
        store.find_conflicting = MagicMock(return_value=None)

        result = UsersUpdater(store, blocks).update(user, {"discord": "raced"})

        assert isinstance(result, DuplicateAttribute)
        assert result.field == "discord"
        assert load_user(db_engine, user.id).discord is None


class TestUnclassifiedViolation:
    """The engine reports a unique violation without naming the constraint;
    the proposed values are re-queried to find the field.
    """

    @pytest.fixture
    def blind_store(self, db_engine):
        store = UserStore(db_engine)
        store.classifier.classify = MagicMock(return_value=None)
        return store

    def test_requery_names_the_field(self, db_engine, blocks, blind_store):
        make_user(db_engine, discord="taken")
        user = make_user(db_engine)
        updater = UsersUpdater(blind_store, blocks, unique_fields=("graffiti",))

        result = updater.update(user, {"discord": "taken"})

        assert isinstance(result, DuplicateAttribute)
        assert result.field == "discord"
        assert result.value == "taken"
        assert load_user(db_engine, user.id) == user

    def test_requery_checks_every_handle(self, db_engine, blocks, blind_store):
        make_user(db_engine, telegram="taken-tg")
        user = make_user(db_engine)
        blind_store.unique_fields = ("graffiti",)
        updater = UsersUpdater(blind_store, blocks, unique_fields=("graffiti",))

        result = updater.update(user, {"graffiti": "free", "telegram": "taken-tg"})

        assert isinstance(result, DuplicateAttribute)
        assert result.field == "telegram"
        assert load_user(db_engine, user.id) == user

    def test_requery_store_unavailable(self, db_engine, blocks, blind_store):
        make_user(db_engine, discord="taken")
        user = make_user(db_engine)
        blind_store.find_conflicting = MagicMock(
            side_effect=[None, StoreUnavailableError("connection reset")]
        )

        result = UsersUpdater(blind_store, blocks).update(user, {"discord": "taken"})

        assert isinstance(result, StoreUnavailable)
        assert "connection reset" in result.reason
        assert load_user(db_engine, user.id) == user

    def test_requery_finds_nothing(self, db_engine, blocks, blind_store):
        make_user(db_engine, discord="taken")
        user = make_user(db_engine)
        blind_store.find_conflicting = MagicMock(return_value=None)

        with pytest.raises(UniqueViolation):
            UsersUpdater(blind_store, blocks).update(user, {"discord": "taken"})

        assert load_user(db_engine, user.id) == user


class TestFromConfig:
    def test_wires_config_into_collaborators(self, db_engine):
        cfg = TallyConfig(
            network_version=7,
            unique_fields=("graffiti", "discord"),
            update_timeout_seconds=1.5,
        )
        updater = UsersUpdater.from_config(db_engine, cfg)

        assert updater.blocks.network_version == 7
        assert updater.unique_fields == ("graffiti", "discord")
        assert updater.store.unique_fields == ("graffiti", "discord")
        assert updater.timeout == 1.5

    def test_network_version_scopes_lock(self, db_engine):
        user = make_user(db_engine, graffiti="g1")
        make_block(db_engine, "g1", network_version=7)

        other_net = UsersUpdater.from_config(db_engine, TallyConfig(network_version=8))
        assert other_net.update(user, {"graffiti": "g2"}).ok

        miner = make_user(db_engine, graffiti="g5")
        make_block(db_engine, "g5", network_version=7)
        same_net = UsersUpdater.from_config(db_engine, TallyConfig(network_version=7))
        assert isinstance(same_net.update(miner, {"graffiti": "g6"}), GraffitiLocked)
