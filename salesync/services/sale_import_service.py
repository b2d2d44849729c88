# salesync/services/sale_import_service.py
"""
Sale import (dedup + insert).

Dedup is decided in the application: existing external ids for the
(user, platform) pair are loaded for the batch and only unseen records are
inserted, in one transaction. The table's unique (user_id, platform,
external_id) constraint turns a racing duplicate into a failed batch
instead of a second row; the next cycle re-runs the same dedup and retries.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from salesync.core.enums import PlatformName
from salesync.core.exceptions import PersistError
from salesync.integrations.base import SaleImportRecord, round_money, utc_now
from salesync.models.sale import Sale

logger = logging.getLogger(__name__)

# Keeps IN (...) lists well under driver parameter limits
LOOKUP_CHUNK_SIZE = 500


@dataclass
class ImportResult:
    platform: PlatformName
    fetched: int = 0
    eligible: int = 0
    inserted: int = 0
    already_present: int = 0
    dropped: int = 0


def _chunks(items: List[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


class SaleImportService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def existing_external_ids(self, user_id: str, platform: PlatformName, external_ids: List[str]) -> Set[str]:
        existing: Set[str] = set()
        for chunk in _chunks(external_ids, LOOKUP_CHUNK_SIZE):
            result = await self.db.execute(
                select(Sale.external_id).where(
                    Sale.user_id == user_id,
                    Sale.platform == platform.value,
                    Sale.external_id.in_(chunk),
                )
            )
            existing.update(result.scalars().all())
        return existing

    def _to_sale(self, user_id: str, record: SaleImportRecord) -> Sale:
        return Sale(
            user_id=user_id,
            platform=PlatformName(record.platform).value,
            external_id=record.external_id,
            sale_price=round_money(record.price or 0),
            shipping_cost=round_money(record.shipping_cost or 0),
            platform_fees=round_money(record.platform_fees or 0),
            cost=0.0,
            buyer_username=record.buyer_username,
            sold_at=record.sold_at or utc_now(),
            item_title=record.title,
            item_image_url=record.image_url or None,
        )

    async def import_sales(self, user_id: str, platform: PlatformName, records: List[SaleImportRecord]) -> ImportResult:
        platform = PlatformName(platform)
        result = ImportResult(platform=platform, fetched=len(records))

        # Without an external id a record cannot be deduplicated
        unique: Dict[str, SaleImportRecord] = {}
        for record in records:
            if not record.external_id:
                result.dropped += 1
                continue
            unique.setdefault(str(record.external_id), record)

        if result.dropped:
            logger.warning(f"Dropped {result.dropped} {platform.value} records without an external id")

        result.eligible = len(unique)
        if not unique:
            return result

        try:
            existing = await self.existing_external_ids(user_id, platform, list(unique))
            new_sales = [
                self._to_sale(user_id, record)
                for external_id, record in unique.items()
                if external_id not in existing
            ]
            result.already_present = len(unique) - len(new_sales)

            if new_sales:
                self.db.add_all(new_sales)
                await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to persist {platform.value} sales for user {user_id}: {e}", exc_info=True)
            raise PersistError(
                f"Failed to save {platform.display_name} sales; they will be retried on the next sync",
                fetched=len(records),
            ) from e

        result.inserted = len(new_sales)
        logger.info(
            f"Imported {result.inserted} {platform.value} sales for user {user_id} "
            f"({result.already_present} already present, {result.dropped} dropped)"
        )
        return result
