"""
Repository for items, their images, and their labels.

All writes are idempotent by identity: discovery and scrape results are
upserted on the item id, image collections are replaced wholesale, and
labels are upserted on the item id.
"""

import logging
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from makergrade.core.database import utcnow
from makergrade.models.item import Item, ItemImage, ItemLabel
from makergrade.schemas.items import DiscoveredCandidate, ScrapedItem

logger = logging.getLogger(__name__)

# Images read back for labeling
STORED_IMAGE_LIMIT = 12


def _upsert_for(session: AsyncSession, table: Any):
    """Dialect-specific INSERT supporting ON CONFLICT."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upsert not supported for dialect {dialect!r}")


def image_id(item_id: str, idx: int) -> str:
    return f"{item_id}_{idx}"


class ItemRepository:
    """Persistence for items discovered, scraped, and labeled by jobs."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # =========================================================================
    # Crawl writes
    # =========================================================================

    async def upsert_discovered(self, candidates: list[DiscoveredCandidate]) -> None:
        """
        Fold discovery sightings into item rows.

        New ids are inserted. Existing rows get the new URL; title, author,
        and cover are only filled where the stored value is still null.
        """
        if not candidates:
            return

        now = utcnow()
        rows = [
            {
                "id": c.id,
                "url": c.url,
                "title": c.title,
                "author": c.author,
                "cover_image": c.cover,
                "created_at": now,
                "updated_at": now,
            }
            for c in candidates
        ]

        async with self._session_factory() as session:
            stmt = _upsert_for(session, Item.__table__).values(rows)
            stmt = stmt.on_conflict_do_update(
                index_elements=[Item.id],
                set_={
                    "url": stmt.excluded.url,
                    "title": func.coalesce(Item.title, stmt.excluded.title),
                    "author": func.coalesce(Item.author, stmt.excluded.author),
                    "cover_image": func.coalesce(Item.cover_image, stmt.excluded.cover_image),
                    "updated_at": now,
                },
            )
            await session.execute(stmt)
            await session.commit()

    async def apply_scraped(self, scraped: ScrapedItem) -> None:
        """Upsert every scraped field and replace the item's images."""
        now = utcnow()
        fields = {
            "url": scraped.url,
            "title": scraped.title,
            "author": scraped.author,
            "downloads": scraped.downloads,
            "cover_image": scraped.cover_image,
            "description": scraped.description,
        }

        async with self._session_factory() as session:
            stmt = _upsert_for(session, Item.__table__).values(
                id=scraped.id, created_at=now, updated_at=now, **fields
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[Item.id],
                set_={**fields, "updated_at": now},
            )
            await session.execute(stmt)

            await session.execute(delete(ItemImage).where(ItemImage.item_id == scraped.id))
            session.add_all(
                ItemImage(id=image_id(scraped.id, idx), item_id=scraped.id, idx=idx, url=url)
                for idx, url in enumerate(scraped.image_urls)
            )
            await session.commit()

        logger.debug(
            "Applied scraped item",
            extra={"item_id": scraped.id, "image_count": len(scraped.image_urls)},
        )

    # =========================================================================
    # Label reads / writes
    # =========================================================================

    async def get(self, item_id: str) -> Item | None:
        async with self._session_factory() as session:
            return await session.get(Item, item_id)

    async def select_unlabeled(self, limit: int | None = None) -> list[Item]:
        """Items without a label, most recently updated first."""
        query = (
            select(Item)
            .outerjoin(ItemLabel, ItemLabel.item_id == Item.id)
            .where(ItemLabel.item_id.is_(None))
            .order_by(Item.updated_at.desc(), Item.id)
        )
        if limit is not None:
            query = query.limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def image_urls(self, item_id: str, limit: int = STORED_IMAGE_LIMIT) -> list[str]:
        """Stored image URLs in gallery order."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ItemImage.url)
                .where(ItemImage.item_id == item_id)
                .order_by(ItemImage.idx)
                .limit(limit)
            )
            return [url for url in result.scalars().all() if url]

    async def save_label(
        self,
        item_id: str,
        grade: str,
        reason: str,
        extracted: dict[str, Any],
    ) -> None:
        """Write the item's label, replacing any label written concurrently."""
        now = utcnow()
        async with self._session_factory() as session:
            stmt = _upsert_for(session, ItemLabel.__table__).values(
                item_id=item_id,
                grade=grade,
                reason=reason,
                extracted=extracted,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[ItemLabel.item_id],
                set_={
                    "grade": stmt.excluded.grade,
                    "reason": stmt.excluded.reason,
                    "extracted": stmt.excluded.extracted,
                    "updated_at": now,
                },
            )
            await session.execute(stmt)
            await session.commit()

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def clear_all(self) -> None:
        """Delete every label, image, and item."""
        async with self._session_factory() as session:
            await session.execute(delete(ItemLabel))
            await session.execute(delete(ItemImage))
            await session.execute(delete(Item))
            await session.commit()

    async def stats(self) -> dict[str, Any]:
        """Item and label totals with a per-grade breakdown."""
        async with self._session_factory() as session:
            total = await session.scalar(select(func.count()).select_from(Item))
            labeled = await session.scalar(select(func.count()).select_from(ItemLabel))
            result = await session.execute(
                select(ItemLabel.grade, func.count()).group_by(ItemLabel.grade)
            )
            by_grade = {grade: count for grade, count in result.all()}
        return {"total": total or 0, "labeled": labeled or 0, "by_grade": by_grade}
