"""Cursor pagination over workforce platform listings."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Generic, TypeVar

from payroll_sync.providers.base import SubmissionPage, TimeActivityPage

logger = logging.getLogger(__name__)

PageT = TypeVar("PageT", SubmissionPage, TimeActivityPage)


class CursorPager(Generic[PageT]):
    """Follows ``next_offset`` cursors until the listing is exhausted.

    Stops on a missing cursor, an empty page, a cursor already seen, or
    ``max_pages``. ``should_cancel`` is checked before every fetch.
    """

    def __init__(
        self,
        fetch: Callable[[int | None], Awaitable[PageT]],
        *,
        max_pages: int,
        should_cancel: Callable[[], bool] | None = None,
        description: str = "listing",
    ):
        self.fetch = fetch
        self.max_pages = max_pages
        self.should_cancel = should_cancel
        self.description = description
        self.pages_fetched = 0
        self.truncated = False
        self.cancelled = False
        self.cursor_loop = False

    async def pages(self) -> AsyncIterator[PageT]:
        offset: int | None = None
        seen: set[int] = set()
        while True:
            if self.should_cancel is not None and self.should_cancel():
                self.cancelled = True
                logger.info("%s cancelled after %d page(s)", self.description, self.pages_fetched)
                return
            if self.pages_fetched >= self.max_pages:
                self.truncated = True
                logger.warning(
                    "%s stopped at page cap %d; results may be incomplete",
                    self.description,
                    self.max_pages,
                )
                return

            page = await self.fetch(offset)
            self.pages_fetched += 1
            yield page

            if _item_count(page) == 0 or page.next_offset is None:
                return
            if page.next_offset in seen or page.next_offset == offset:
                self.cursor_loop = True
                logger.warning(
                    "%s returned repeated cursor %s; stopping", self.description, page.next_offset
                )
                return
            seen.add(page.next_offset)
            offset = page.next_offset


def _item_count(page: SubmissionPage | TimeActivityPage) -> int:
    if isinstance(page, SubmissionPage):
        return len(page.items)
    return len(page.users)
