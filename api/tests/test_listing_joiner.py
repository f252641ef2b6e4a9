from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

from alumni_api.services.listing import AuthorCache, ListingJoiner
from alumni_api.services.records import MemberRecord
from alumni_api.services.store import InMemoryStore

T = TypeVar("T")


class CountingLookupStore(InMemoryStore):
    def __init__(self) -> None:
        super().__init__()
        self.lookups: list[list[str]] = []

    async def get_members_by_keys(self, keys: list[str]) -> list[MemberRecord]:
        self.lookups.append(list(keys))
        return await super().get_members_by_keys(keys)


def test_rows_join_by_internal_id_or_subject_id(
    store: InMemoryStore,
    make_member: Callable[..., MemberRecord],
) -> None:
    poster = make_member(store, email="poster@example.edu", subject_id="uid-poster", role="alumni", company="Acme")
    author = make_member(store, email="author@example.edu", subject_id="uid-author")
    jobs = [{"id": "job-1", "title": "Data Engineer", "posted_by": "uid-poster"}]
    stories = [{"id": "story-1", "title": "Ten years on", "author_id": author.id}]
    joiner = ListingJoiner(store)

    joined_jobs = _run(joiner.join_listing(jobs, "posted_by", author_field="poster"))
    joined_stories = _run(joiner.join_listing(stories, "author_id"))

    assert joined_jobs[0]["poster"]["id"] == poster.id
    assert joined_jobs[0]["poster"]["company"] == "Acme"
    assert joined_jobs[0]["title"] == "Data Engineer"
    assert joined_stories[0]["author"]["id"] == author.id
    assert set(joined_stories[0]["author"]) == {"id", "display_name", "role", "batch_year", "company", "avatar_url"}


def test_row_without_matching_member_is_dropped_not_raised(
    store: InMemoryStore,
    make_member: Callable[..., MemberRecord],
) -> None:
    author = make_member(store, email="author@example.edu")
    rows = [
        {"id": "s1", "author_id": author.id},
        {"id": "s2", "author_id": "deleted-member"},
        {"id": "s3", "author_id": None},
        {"id": "s4", "author_id": "   "},
        {"id": "s5", "author_id": author.id},
    ]

    joined = _run(ListingJoiner(store).join_listing(rows, "author_id"))

    assert [row["id"] for row in joined] == ["s1", "s5"]


def test_unmatched_rows_can_be_kept_without_a_summary(
    store: InMemoryStore,
    make_member: Callable[..., MemberRecord],
) -> None:
    actor = make_member(store, email="admin@example.edu", role="admin")
    rows = [{"id": 2, "actor_id": actor.id}, {"id": 1, "actor_id": "removed-admin"}]

    joined = _run(ListingJoiner(store).join_listing(rows, "actor_id", author_field="actor", drop_unmatched=False))

    assert [row["id"] for row in joined] == [2, 1]
    assert joined[0]["actor"]["role"] == "admin"
    assert joined[1]["actor"] is None


def test_internal_id_wins_over_subject_id_collision(
    store: InMemoryStore,
    make_member: Callable[..., MemberRecord],
) -> None:
    by_id = make_member(store, email="a@example.edu")
    make_member(store, email="b@example.edu", subject_id=by_id.id)

    joined = _run(ListingJoiner(store).join_listing([{"id": "r", "author_id": by_id.id}], "author_id"))

    assert joined[0]["author"]["id"] == by_id.id


def test_cache_serves_repeat_lookups_until_invalidated(make_member: Callable[..., MemberRecord]) -> None:
    store = CountingLookupStore()
    member = make_member(store, email="c@example.edu", subject_id="uid-c", display_name="Before")
    cache = AuthorCache(ttl_seconds=60)
    joiner = ListingJoiner(store, cache)
    rows = [{"id": "j", "posted_by": "uid-c"}]

    _run(joiner.join_listing(rows, "posted_by"))
    _run(joiner.join_listing(rows, "posted_by"))
    assert len(store.lookups) == 1

    store.members[member.id].display_name = "After"
    cache.invalidate([member.id])
    joined = _run(joiner.join_listing(rows, "posted_by"))

    assert len(store.lookups) == 2
    assert joined[0]["author"]["display_name"] == "After"


def test_zero_ttl_disables_cache(make_member: Callable[..., MemberRecord]) -> None:
    store = CountingLookupStore()
    member = make_member(store, email="z@example.edu")
    joiner = ListingJoiner(store, AuthorCache(ttl_seconds=0))
    rows = [{"id": "r", "author_id": member.id}]

    _run(joiner.join_listing(rows, "author_id"))
    _run(joiner.join_listing(rows, "author_id"))

    assert len(store.lookups) == 2


def _run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)
