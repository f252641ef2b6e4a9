from __future__ import annotations

import logging
from typing import Any

from alumni_api.services.records import IdentityAssertion, MemberRecord, normalize_email
from alumni_api.services.repository import (
    RepositoryConflictError,
    RepositoryUniqueViolationError,
    RepositoryValidationError,
)

logger = logging.getLogger(__name__)


class IdentityConflictError(RepositoryConflictError):
    """Raised when an email's record is already bound to another subject id."""


class IdentityResolver:
    """Binds identity-provider assertions to exactly one member record.

    Lookup order is subject id, then email (linking the subject onto an
    existing record), then creation. Races between concurrent first logins are
    settled by the store's uniqueness constraints: the losing writer retries
    the whole lookup once and picks up the winner's record.
    """

    def __init__(self, repository: Any, *, default_role: str = "student") -> None:
        self.repository = repository
        self.default_role = default_role

    async def resolve(self, assertion: IdentityAssertion) -> MemberRecord:
        subject_id = (assertion.subject_id or "").strip()
        email = normalize_email(assertion.email or "")
        if not subject_id:
            raise RepositoryValidationError("identity assertion has no subject id")
        if not email:
            raise RepositoryValidationError("identity assertion has no verified email")

        try:
            return await self._resolve_once(assertion, subject_id=subject_id, email=email)
        except RepositoryUniqueViolationError as exc:
            logger.info("identity resolution raced subject=%s email=%s: %s; retrying", subject_id, email, exc)

        try:
            return await self._resolve_once(assertion, subject_id=subject_id, email=email)
        except RepositoryUniqueViolationError as exc:
            raise IdentityConflictError(f"identity could not be resolved for subject {subject_id}") from exc

    async def _resolve_once(self, assertion: IdentityAssertion, *, subject_id: str, email: str) -> MemberRecord:
        member = await self.repository.get_member_by_subject(subject_id)
        if member is not None:
            return member

        member = await self.repository.get_member_by_email(email)
        if member is not None:
            return await self._link(member, subject_id=subject_id)

        display_name = (assertion.display_name or "").strip() or email.split("@", 1)[0]
        member = await self.repository.create_member(
            email=email,
            display_name=display_name,
            external_subject_id=subject_id,
            role=self.default_role,
            avatar_url=assertion.avatar_url,
        )
        logger.info("member created id=%s subject=%s state=%s", member.id, subject_id, member.approval_state)
        return member

    async def _link(self, member: MemberRecord, *, subject_id: str) -> MemberRecord:
        if member.external_subject_id == subject_id:
            return member
        if member.external_subject_id is not None:
            raise IdentityConflictError(f"member {member.id} is bound to a different identity")

        linked = await self.repository.link_member_subject(member_id=member.id, subject_id=subject_id)
        if linked is not None:
            logger.info("linked subject=%s onto existing member id=%s", subject_id, member.id)
            return linked

        # Another writer set the subject between our read and the conditional write.
        current = await self.repository.get_member(member.id)
        if current is not None and current.external_subject_id == subject_id:
            return current
        raise IdentityConflictError(f"member {member.id} is bound to a different identity")
