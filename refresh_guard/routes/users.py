from fastapi import APIRouter, Depends

from refresh_guard.dependencies.auth import get_current_subject
from refresh_guard.schemas.auth import MeOut
from refresh_guard.services.users import Subject

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=MeOut)
def me(subject: Subject = Depends(get_current_subject)):
    return {"id": subject.id, "email": subject.email, "roles": list(subject.roles)}
