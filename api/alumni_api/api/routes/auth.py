from fastapi import APIRouter, Depends

from alumni_api.core.security import get_current_member
from alumni_api.schemas.members import MemberOut
from alumni_api.services.records import MemberRecord

router = APIRouter()


@router.post("/session", response_model=MemberOut)
async def resolve_session(member: MemberRecord = Depends(get_current_member)) -> MemberOut:
    """Bind the caller's identity-provider account to a member record.

    Succeeds for pending and rejected members too; admission is checked by the
    routes that need it.
    """
    return MemberOut(**member.to_dict())


@router.get("/me", response_model=MemberOut)
async def get_me(member: MemberRecord = Depends(get_current_member)) -> MemberOut:
    return MemberOut(**member.to_dict())
