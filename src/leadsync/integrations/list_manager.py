"""Lead list maintenance for provider-synced lists.

Synced lists are looked up by (business, name, provenance tag) so they
never collide with a user-created list of the same name. Membership links
are idempotent, and counts are recomputed once per run after all links
are in place.
"""

from __future__ import annotations

import structlog

from src.leadsync.integrations.repository import SyncRepository

logger = structlog.get_logger(__name__)

SALESFORCE_SYNC_SOURCE = "salesforce_sync"
SALESFORCE_LIST_COLOR = "#0070f3"


class ListManager:
    """Get-or-create, link and recount for provenance-tagged lead lists.

    Args:
        repository: SyncRepository for list and membership persistence.
        source: Provenance tag written on lists this manager creates.
        color: Display color for newly created lists.
    """

    def __init__(
        self,
        repository: SyncRepository,
        source: str = SALESFORCE_SYNC_SOURCE,
        color: str = SALESFORCE_LIST_COLOR,
    ) -> None:
        self._repository = repository
        self._source = source
        self._color = color

    async def ensure_list(self, business_id: str, name: str, description: str) -> str:
        """Return the id of the business's synced list called name, creating it if absent."""
        existing = await self._repository.get_lead_list_id(business_id, name, self._source)
        if existing is not None:
            logger.debug("lead_lists.exists", list_id=existing, name=name)
            return existing

        list_id = await self._repository.create_lead_list(
            business_id=business_id,
            name=name,
            description=description,
            source=self._source,
            color=self._color,
            list_type="static",
        )
        logger.info("lead_lists.created", list_id=list_id, name=name, business_id=business_id)
        return list_id

    async def link(self, list_id: str, lead_id: str) -> None:
        """Add a lead to a list. Failures of any kind are logged, never raised."""
        try:
            await self._repository.add_list_member(list_id, lead_id)
        except Exception as exc:
            logger.warning(
                "lead_lists.link_failed",
                list_id=list_id,
                lead_id=lead_id,
                error=str(exc),
            )

    async def recount(self, list_ids: list[str]) -> None:
        """Recompute lead_count for each list from its memberships."""
        for list_id in list_ids:
            try:
                count = await self._repository.count_list_members(list_id)
                await self._repository.update_lead_list_count(list_id, count)
            except Exception as exc:
                logger.warning("lead_lists.count_failed", list_id=list_id, error=str(exc))
                continue
            logger.info("lead_lists.count_updated", list_id=list_id, lead_count=count)
