"""Identity resolution between platform user ids and payroll emails."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from payroll_sync.errors import IdentityUnresolved, UpstreamUnavailable
from payroll_sync.providers.base import WorkforcePlatform

logger = logging.getLogger(__name__)


@dataclass
class IdentityDirectory:
    """In-memory directory built for one sync operation. Never persisted."""

    by_email: dict[str, str] = field(default_factory=dict)
    by_user_id: dict[str, str] = field(default_factory=dict)
    pages_fetched: int = 0
    truncated: bool = False

    def add(self, external_user_id: str, email: str) -> None:
        key = email.strip().lower()
        self.by_email[key] = external_user_id
        self.by_user_id[external_user_id] = key

    def email_for(self, external_user_id: str | int | None) -> str | None:
        if external_user_id is None:
            return None
        return self.by_user_id.get(str(external_user_id))

    def user_id_for(self, email: str) -> str | None:
        return self.by_email.get(email.strip().lower())


@dataclass
class IdentityResolution:
    """Result of resolving a candidate email set."""

    mapping: dict[str, str] = field(default_factory=dict)  # email -> external id
    missing: set[str] = field(default_factory=set)
    truncated: bool = False

    @property
    def complete(self) -> bool:
        """All candidates resolved from a directory that was not cut short."""
        return not self.missing and not self.truncated


class IdentityResolver:
    """Maps numeric platform user ids to lower-cased payroll emails.

    The user directory is paged by page number until a short page or the
    page cap. Hitting the cap marks the directory truncated so callers can
    tell partial coverage from a genuinely missing user.

    Without a platform (no API key configured) every single-user lookup is
    unresolved and directory builds raise UpstreamUnavailable.
    """

    def __init__(
        self,
        platform: WorkforcePlatform | None,
        page_size: int = 100,
        max_pages: int = 10,
    ):
        if page_size < 1 or max_pages < 1:
            raise ValueError("page_size and max_pages must be at least 1")
        self.platform = platform
        self.page_size = page_size
        self.max_pages = max_pages
        self._user_cache: dict[str, str | None] = {}

    async def build_directory(self) -> IdentityDirectory:
        """Page through the platform's user list.

        Raises:
            UpstreamUnavailable: On any non-success response
        """
        if self.platform is None:
            raise UpstreamUnavailable("No workforce platform configured")
        directory = IdentityDirectory()
        page = 1
        while True:
            if page > self.max_pages:
                directory.truncated = True
                logger.warning(
                    "User directory truncated at %d pages of %d; identities may be missing",
                    self.max_pages,
                    self.page_size,
                )
                break
            users = await self.platform.list_users(page=page, limit=self.page_size)
            directory.pages_fetched += 1
            for user in users:
                email = user.normalized_email
                if email:
                    directory.add(user.external_user_id, email)
            if len(users) < self.page_size:
                break
            page += 1

        logger.info(
            "Loaded %d platform identities over %d page(s)",
            len(directory.by_user_id),
            directory.pages_fetched,
        )
        return directory

    async def resolve_all(
        self,
        candidate_emails: Iterable[str],
        directory: IdentityDirectory | None = None,
    ) -> IdentityResolution:
        """Resolve payroll emails to platform user ids.

        Args:
            candidate_emails: Emails to resolve (matched case-insensitively)
            directory: A directory already built in this sync operation

        Returns:
            IdentityResolution keyed by lower-cased email
        """
        if directory is None:
            directory = await self.build_directory()
        result = IdentityResolution(truncated=directory.truncated)
        for email in candidate_emails:
            key = email.strip().lower()
            user_id = directory.by_email.get(key)
            if user_id is None:
                result.missing.add(key)
            else:
                result.mapping[key] = user_id
        if result.missing:
            logger.info(
                "%d candidate email(s) not found on the platform%s",
                len(result.missing),
                " (directory truncated)" if result.truncated else "",
            )
        return result

    async def resolve_user(self, external_user_id: str | int) -> str:
        """Resolve a single platform user id to an email.

        Results are cached for the lifetime of this resolver.

        Raises:
            IdentityUnresolved: If the user is unknown, has no email, or the
                lookup failed upstream
        """
        key = str(external_user_id)
        if key in self._user_cache:
            cached = self._user_cache[key]
            if cached is None:
                raise IdentityUnresolved(key, "no email on platform")
            return cached
        if self.platform is None:
            raise IdentityUnresolved(key, "no workforce platform configured")

        try:
            user = await self.platform.get_user(key)
        except UpstreamUnavailable as e:
            # Not cached: a later delivery may succeed
            raise IdentityUnresolved(key, str(e)) from e

        email = user.normalized_email if user is not None else None
        self._user_cache[key] = email
        if email is None:
            raise IdentityUnresolved(key, "no email on platform")
        return email
