from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select
from ..auth import Identity, get_identity, get_profile
from ..db import get_session
from ..models import Profile, Property
from ..schemas import ProfileUpsert, PropertyCreate
from ..usage import signatures_used

router = APIRouter()

PROFILE_ROLES = {"owner", "tenant", "guarantor"}

@router.post("/profiles/me")
def upsert_my_profile(
    data: ProfileUpsert,
    identity: Identity = Depends(get_identity),
    session: Session = Depends(get_session),
):
    if data.role not in PROFILE_ROLES:
        raise HTTPException(400, f"unknown profile role {data.role}")
    profile = session.exec(select(Profile).where(Profile.user_id == identity.user_id)).first()
    if profile is None:
        profile = Profile(user_id=identity.user_id, email=identity.email)
    profile.first_name = data.first_name
    profile.last_name = data.last_name
    profile.role = data.role
    if identity.email:
        profile.email = identity.email
    session.add(profile)
    session.commit()
    session.refresh(profile)
    return profile

@router.get("/profiles/me")
def get_my_profile(profile: Profile = Depends(get_profile), session: Session = Depends(get_session)):
    body = profile.model_dump()
    if profile.role == "owner":
        body["signatures_this_month"] = signatures_used(session, profile.id)
    return body

@router.post("/properties", status_code=201)
def create_property(data: PropertyCreate, profile: Profile = Depends(get_profile),
                    session: Session = Depends(get_session)):
    if profile.role != "owner":
        raise HTTPException(403, "only owners can register properties")
    prop = Property(owner_id=profile.id, address=data.address)
    session.add(prop)
    session.commit()
    session.refresh(prop)
    return prop

@router.get("/properties")
def list_properties(profile: Profile = Depends(get_profile), session: Session = Depends(get_session)):
    return session.exec(select(Property).where(Property.owner_id == profile.id).order_by(Property.id)).all()
