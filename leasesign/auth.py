from typing import Optional
from fastapi import Depends, Header, HTTPException, status
from itsdangerous import BadSignature
from pydantic import BaseModel
from sqlmodel import Session, select

from . import config
from .db import get_session
from .models import Profile
from .utils import read_token


class Identity(BaseModel):
    user_id: str
    email: str


def get_identity(authorization: Optional[str] = Header(default=None)) -> Identity:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    token = authorization.split(" ", 1)[1].strip()
    try:
        data = read_token(token)
    except BadSignature:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session token")
    if not data.get("user_id"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session token")
    return Identity(user_id=str(data["user_id"]), email=(data.get("email") or "").strip().lower())


def get_profile(
    identity: Identity = Depends(get_identity),
    session: Session = Depends(get_session),
) -> Profile:
    profile = session.exec(select(Profile).where(Profile.user_id == identity.user_id)).first()
    if not profile:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")
    return profile


def require_admin_access(
    x_access_token: Optional[str] = Header(default=None, alias="X-Access-Token"),
) -> str:
    if not x_access_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing access token")
    if not config.ADMIN_ACCESS_TOKEN or x_access_token != config.ADMIN_ACCESS_TOKEN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return "admin"
