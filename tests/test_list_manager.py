"""Unit tests for ListManager get-or-create, linking and recount."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from src.leadsync.integrations.list_manager import (
    SALESFORCE_LIST_COLOR,
    SALESFORCE_SYNC_SOURCE,
    ListManager,
)

from conftest import BUSINESS_ID, InMemorySyncRepository


@pytest.fixture
def repo() -> InMemorySyncRepository:
    return InMemorySyncRepository()


class TestEnsureList:
    async def test_creates_tagged_static_list(self, repo):
        manager = ListManager(repo)

        list_id = await manager.ensure_list(BUSINESS_ID, "Salesforce Contacts", "synced")

        row = repo.lists[list_id]
        assert row["name"] == "Salesforce Contacts"
        assert row["source"] == SALESFORCE_SYNC_SOURCE
        assert row["color"] == SALESFORCE_LIST_COLOR
        assert row["list_type"] == "static"
        assert row["description"] == "synced"

    async def test_returns_existing_list(self, repo):
        manager = ListManager(repo)

        first = await manager.ensure_list(BUSINESS_ID, "Salesforce Leads", "synced")
        second = await manager.ensure_list(BUSINESS_ID, "Salesforce Leads", "synced")

        assert first == second
        assert len(repo.lists) == 1

    async def test_user_list_with_same_name_is_not_reused(self, repo):
        user_list = await repo.create_lead_list(
            BUSINESS_ID, "Salesforce Leads", "mine", source="manual", color="#000000"
        )

        synced = await ListManager(repo).ensure_list(BUSINESS_ID, "Salesforce Leads", "synced")

        assert synced != user_list
        assert len(repo.lists) == 2


class TestLinkAndRecount:
    async def test_duplicate_link_counts_once(self, repo):
        manager = ListManager(repo)
        list_id = await manager.ensure_list(BUSINESS_ID, "Salesforce Contacts", "synced")

        await manager.link(list_id, "lead-1")
        await manager.link(list_id, "lead-1")
        await manager.link(list_id, "lead-2")
        await manager.recount([list_id])

        assert repo.lists[list_id]["lead_count"] == 2

    async def test_link_swallows_datastore_errors(self):
        repo = AsyncMock()
        repo.add_list_member.side_effect = IntegrityError("INSERT", {}, Exception("dup"))

        await ListManager(repo).link("list-1", "lead-1")

        repo.add_list_member.assert_awaited_once_with("list-1", "lead-1")

    async def test_recount_continues_after_failure(self):
        repo = AsyncMock()
        repo.count_list_members.side_effect = [
            OperationalError("SELECT", {}, Exception("gone")),
            4,
        ]

        await ListManager(repo).recount(["list-1", "list-2"])

        repo.update_lead_list_count.assert_awaited_once_with("list-2", 4)

    async def test_link_swallows_driver_errors(self):
        repo = AsyncMock()
        repo.add_list_member.side_effect = ConnectionResetError("db connection dropped")

        await ListManager(repo).link("list-1", "lead-1")

        repo.add_list_member.assert_awaited_once_with("list-1", "lead-1")

    async def test_recount_continues_after_driver_error(self):
        repo = AsyncMock()
        repo.count_list_members.side_effect = [ConnectionResetError("reset"), 7]

        await ListManager(repo).recount(["list-1", "list-2"])

        repo.update_lead_list_count.assert_awaited_once_with("list-2", 7)
