from datetime import datetime, timezone
from typing import Any

import httpx
from fastapi import Depends, Header, HTTPException, status

from alumni_api.core.auth import Principal, scopes_for_member
from alumni_api.core.config import Settings, get_settings
from alumni_api.services.identity import IdentityConflictError, IdentityResolver
from alumni_api.services.providers import get_identity_resolver
from alumni_api.services.records import IdentityAssertion, MemberRecord
from alumni_api.services.repository import RepositoryUnavailableError, RepositoryValidationError


async def get_identity_assertion(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> IdentityAssertion:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="human auth requires bearer token",
        )

    token = authorization.split(" ", maxsplit=1)[1].strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="empty bearer token")

    if not settings.supabase_url or not settings.supabase_anon_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth is not configured",
        )

    user = await _fetch_supabase_user(
        supabase_url=settings.supabase_url,
        supabase_anon_key=settings.supabase_anon_key,
        token=token,
        timeout_seconds=settings.auth_timeout_seconds,
    )
    return _assertion_from_user(user)


async def get_current_member(
    assertion: IdentityAssertion = Depends(get_identity_assertion),
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> MemberRecord:
    try:
        return await resolver.resolve(assertion)
    except IdentityConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


async def get_human_principal(member: MemberRecord = Depends(get_current_member)) -> Principal:
    return Principal(member=member, scopes=scopes_for_member(member))


async def _fetch_supabase_user(
    *,
    supabase_url: str,
    supabase_anon_key: str,
    token: str,
    timeout_seconds: float,
) -> dict[str, Any]:
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": supabase_anon_key,
    }
    url = f"{supabase_url.rstrip('/')}/auth/v1/user"

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification unavailable",
        ) from exc

    if response.status_code in {401, 403}:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")
    if response.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification failed",
        )

    return response.json()


def _assertion_from_user(user: dict[str, Any]) -> IdentityAssertion:
    user_id = user.get("id")
    if not isinstance(user_id, str) or not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")

    email = user.get("email")
    if not isinstance(email, str) or not email.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="identity has no email")
    if "email_confirmed_at" in user and not user["email_confirmed_at"]:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="email is not verified")

    metadata = user.get("user_metadata")
    if not isinstance(metadata, dict):
        metadata = {}

    return IdentityAssertion(
        subject_id=user_id,
        email=email,
        display_name=_first_text(metadata.get("full_name"), metadata.get("name")) or "",
        issued_at=_parse_timestamp(user.get("last_sign_in_at")) or datetime.now(timezone.utc),
        avatar_url=_first_text(metadata.get("avatar_url"), metadata.get("picture")),
    )


def _first_text(*values: Any) -> str | None:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
