from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from .container import Services
from .deps import get_current_user, get_services
from .domain import Role, UserSummary
from .errors import AuthenticationFailed
from .security import create_session_token

router = APIRouter(prefix="/auth", tags=["auth"])


class SignupReq(BaseModel):
    username: str = Field(min_length=3, max_length=64)
    password: str = Field(min_length=6)
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    mobile: str = ""
    department: str = ""


class LoginReq(BaseModel):
    username: str
    password: str
    role: Optional[Role] = None


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(req: SignupReq, services: Services = Depends(get_services)):
    # Self-service accounts are always plain users; admins come from bootstrap or seed.
    user = await run_in_threadpool(
        services.users.create_user,
        username=req.username,
        password=req.password,
        name=req.name,
        email=req.email,
        mobile=req.mobile,
        department=req.department,
    )
    return {"message": "Registration successful", "user": user.to_dict()}


@router.post("/login")
async def login(req: LoginReq, services: Services = Depends(get_services)):
    user = await run_in_threadpool(services.users.authenticate, req.username, req.password)
    if req.role is not None and user.role != req.role:
        raise AuthenticationFailed("Role mismatch")

    settings = services.settings
    token = create_session_token(
        user.id,
        settings.SESSION_SECRET,
        algorithm=settings.SESSION_ALGORITHM,
        ttl_minutes=settings.SESSION_TTL_MINUTES,
    )
    return {"access_token": token, "token_type": "bearer", "user": user.to_dict()}


@router.get("/me")
def me(user: UserSummary = Depends(get_current_user)):
    return {"user": user.to_dict()}
