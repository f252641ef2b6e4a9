"""FastAPI dependency providers wiring the core services to the store.

Every provider depends on ``get_repository``, so overriding that single
dependency swaps the backing store for the whole graph.
"""

from typing import Any

from fastapi import Depends

from alumni_api.core.config import Settings, get_settings
from alumni_api.services.approval import ApprovalStateMachine
from alumni_api.services.bulk import BulkActionCoordinator
from alumni_api.services.identity import IdentityResolver
from alumni_api.services.ledger import ModerationLedger
from alumni_api.services.listing import AuthorCache, ListingJoiner, get_author_cache
from alumni_api.services.notifier import Notifier, get_notifier
from alumni_api.services.repository import get_repository


def get_identity_resolver(
    repository: Any = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> IdentityResolver:
    return IdentityResolver(repository, default_role=settings.default_member_role)


def get_ledger(
    repository: Any = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> ModerationLedger:
    return ModerationLedger(repository, max_page_size=settings.moderation_log_max_page_size)


def get_listing_joiner(
    repository: Any = Depends(get_repository),
    cache: AuthorCache = Depends(get_author_cache),
) -> ListingJoiner:
    return ListingJoiner(repository, cache)


def get_state_machine(
    repository: Any = Depends(get_repository),
    ledger: ModerationLedger = Depends(get_ledger),
    notifier: Notifier = Depends(get_notifier),
    cache: AuthorCache = Depends(get_author_cache),
    settings: Settings = Depends(get_settings),
) -> ApprovalStateMachine:
    return ApprovalStateMachine(
        repository,
        ledger,
        notifier=notifier,
        author_cache=cache,
        published_title=settings.published_media_default_title,
        published_category=settings.published_media_default_category,
    )


def get_bulk_coordinator(
    state_machine: ApprovalStateMachine = Depends(get_state_machine),
    ledger: ModerationLedger = Depends(get_ledger),
    cache: AuthorCache = Depends(get_author_cache),
    settings: Settings = Depends(get_settings),
) -> BulkActionCoordinator:
    return BulkActionCoordinator(
        state_machine,
        ledger,
        author_cache=cache,
        max_targets=settings.bulk_max_targets,
    )
