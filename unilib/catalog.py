import logging
from datetime import datetime
from typing import Callable, List, Optional

from unilib.exceptions import (
    DuplicateIsbnError,
    DuplicateItemCodeError,
    InvalidQuantityError,
    ItemHasActiveLoansError,
    ItemNotFoundError,
)
from unilib.models import CatalogItem, utcnow
from unilib.repository import Repository
from unilib.schemas import CatalogItemCreate, CatalogItemUpdate, ItemFilterParams

logger = logging.getLogger(__name__)


class CatalogManager:
    """Catalog titles and their copy counts.

    Borrowed/available counters are moved only by the loan engine; this
    manager changes the total and recomputes availability from it.
    """

    def __init__(
        self, repository: Repository, clock: Callable[[], datetime] = utcnow
    ) -> None:
        self.repository = repository
        self.clock = clock

    def get(self, item_id: int) -> CatalogItem:
        item = self.repository.get_item(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item

    def query(self, filters: Optional[ItemFilterParams] = None) -> List[CatalogItem]:
        return self.repository.list_items(filters or ItemFilterParams())

    def add_item(self, data: CatalogItemCreate) -> CatalogItem:
        if data.total_copies < 0:
            raise InvalidQuantityError(data.total_copies)
        if self.repository.find_item_by_code(data.code) is not None:
            raise DuplicateItemCodeError(data.code)
        if data.isbn and self.repository.find_item_by_isbn(data.isbn) is not None:
            raise DuplicateIsbnError(data.isbn)

        item = self.repository.run_atomically(
            lambda: self.repository.create(
                CatalogItem(
                    **data.model_dump(),
                    available_copies=data.total_copies,
                    borrowed_copies=0,
                )
            )
        )
        logger.info(f"Catalog item {item.id} ({item.code}) added with {item.total_copies} copies")
        return item

    def update_details(self, item_id: int, patch: CatalogItemUpdate) -> CatalogItem:
        changes = patch.model_dump(exclude_unset=True)
        item = self.get(item_id)
        if changes.get("isbn") and changes["isbn"] != item.isbn:
            if self.repository.find_item_by_isbn(changes["isbn"], exclude_id=item.id):
                raise DuplicateIsbnError(changes["isbn"])
        if not changes:
            return item
        return self.repository.run_atomically(
            lambda: self.repository.update(item, changes)
        )

    def update_quantity(self, item_id: int, new_total: int) -> CatalogItem:
        item = self.get(item_id)
        if new_total < 0:
            raise InvalidQuantityError(new_total)
        if new_total < item.borrowed_copies:
            raise InvalidQuantityError(new_total, item.borrowed_copies)

        def apply() -> CatalogItem:
            if not self.repository.set_total_copies(item, new_total):
                # a loan went out between the check and the write
                raise InvalidQuantityError(new_total, item.borrowed_copies)
            return item

        item = self.repository.run_atomically(apply)
        logger.info(
            f"Catalog item {item.id} total set to {item.total_copies} "
            f"({item.available_copies} available)"
        )
        return item

    def remove_item(self, item_id: int) -> CatalogItem:
        item = self.get(item_id)
        outstanding = self.repository.count_outstanding_loans(item_id=item.id)
        if outstanding > 0:
            raise ItemHasActiveLoansError(item.id, outstanding)

        # loans keep pointing at the item, so it is withdrawn rather than deleted
        item = self.repository.run_atomically(
            lambda: self.repository.update(item, {"removed_at": self.clock()})
        )
        logger.info(f"Catalog item {item.id} ({item.code}) removed")
        return item
