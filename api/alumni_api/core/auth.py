from dataclasses import dataclass

from alumni_api.services.records import MemberRecord

ROLE_SCOPES: dict[str, set[str]] = {
    "guest": {"directory:read"},
    "student": {"directory:read", "media:write"},
    "alumni": {"directory:read", "media:write"},
    "admin": {
        "directory:read",
        "media:write",
        "moderation:read",
        "moderation:write",
        "admin:write",
    },
}


@dataclass(slots=True)
class Principal:
    member: MemberRecord
    scopes: set[str]

    @property
    def actor_id(self) -> str:
        return self.member.id

    def require_scopes(self, required: set[str]) -> None:
        if not self.member.is_approved:
            raise PermissionError(f"membership is {self.member.approval_state}")
        missing = required - self.scopes
        if missing:
            raise PermissionError(f"missing required scopes: {sorted(missing)}")


def scopes_for_member(member: MemberRecord) -> set[str]:
    """Authenticated but unadmitted members carry no scopes at all."""
    if not member.is_approved:
        return set()
    return set(ROLE_SCOPES.get(member.role, ROLE_SCOPES["guest"]))
