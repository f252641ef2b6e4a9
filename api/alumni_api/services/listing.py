from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from functools import lru_cache
from typing import Any

from alumni_api.core.config import get_settings
from alumni_api.services.records import MemberRecord

logger = logging.getLogger(__name__)

AUTHOR_SUMMARY_FIELDS = ("id", "display_name", "role", "batch_year", "company", "avatar_url")


def member_summary(member: MemberRecord) -> dict[str, Any]:
    return {name: getattr(member, name) for name in AUTHOR_SUMMARY_FIELDS}


class AuthorCache:
    """Short-lived cache of member summaries keyed by id and by subject id."""

    def __init__(self, ttl_seconds: float = 30.0) -> None:
        self.ttl_seconds = ttl_seconds
        self._entries: dict[str, tuple[float, MemberRecord]] = {}

    def get(self, key: str) -> MemberRecord | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, member = entry
        if expires_at < time.monotonic():
            self._entries.pop(key, None)
            return None
        return member

    def put(self, member: MemberRecord) -> None:
        if self.ttl_seconds <= 0:
            return
        expires_at = time.monotonic() + self.ttl_seconds
        self._entries[member.id] = (expires_at, member)
        if member.external_subject_id:
            self._entries[member.external_subject_id] = (expires_at, member)

    def invalidate(self, member_ids: Iterable[str]) -> None:
        stale = set(member_ids)
        if not stale:
            return
        for key in [key for key, (_, member) in self._entries.items() if member.id in stale]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()


class ListingJoiner:
    def __init__(self, repository: Any, cache: AuthorCache | None = None) -> None:
        self.repository = repository
        self.cache = cache

    async def join_listing(
        self,
        rows: list[dict[str, Any]],
        key_field: str,
        *,
        author_field: str = "author",
        drop_unmatched: bool = True,
    ) -> list[dict[str, Any]]:
        """Attach an author summary to each row, matching ``row[key_field]``
        against member ids first and external subject ids second.

        Rows whose key is empty or matches no member are dropped so one
        orphaned row never fails the whole listing. With ``drop_unmatched``
        off they are kept and carry ``None`` under ``author_field``.
        """
        keys = list(dict.fromkeys(self._row_key(row, key_field) for row in rows))
        keys = [key for key in keys if key]
        resolved = await self._resolve_keys(keys)

        joined: list[dict[str, Any]] = []
        for row in rows:
            key = self._row_key(row, key_field)
            member = resolved.get(key) if key else None
            if member is not None:
                joined.append({**row, author_field: member_summary(member)})
            elif not drop_unmatched:
                joined.append({**row, author_field: None})
            else:
                logger.debug("listing row dropped; no member for %s=%s row_id=%s", key_field, key, row.get("id"))
        return joined

    async def _resolve_keys(self, keys: list[str]) -> dict[str, MemberRecord]:
        resolved: dict[str, MemberRecord] = {}
        misses: list[str] = []
        for key in keys:
            cached = self.cache.get(key) if self.cache else None
            if cached is None:
                misses.append(key)
            else:
                resolved[key] = cached

        if not misses:
            return resolved

        members = await self.repository.get_members_by_keys(misses)
        by_id = {member.id: member for member in members}
        by_subject = {member.external_subject_id: member for member in members if member.external_subject_id}
        for key in misses:
            member = by_id.get(key) or by_subject.get(key)
            if member is None:
                continue
            resolved[key] = member
            if self.cache:
                self.cache.put(member)
        return resolved

    @staticmethod
    def _row_key(row: dict[str, Any], key_field: str) -> str | None:
        value = row.get(key_field)
        if value is None:
            return None
        text = str(value).strip()
        return text or None


@lru_cache
def get_author_cache() -> AuthorCache:
    return AuthorCache(ttl_seconds=get_settings().listing_cache_ttl_seconds)
