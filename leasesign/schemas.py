from datetime import date
from typing import List, Optional
from pydantic import BaseModel, Field, model_validator

class ProfileUpsert(BaseModel):
    first_name: str = ""
    last_name: str = ""
    role: str = "tenant"

class PropertyCreate(BaseModel):
    address: str

class SignerCreate(BaseModel):
    role: str
    profile_id: Optional[int] = None
    invited_email: Optional[str] = None
    invited_name: Optional[str] = None

    @model_validator(mode="after")
    def _linked_or_invited(self):
        if self.profile_id is None and not (self.invited_email or "").strip():
            raise ValueError("a signer needs a profile_id or an invited_email")
        return self

class LeaseCreate(BaseModel):
    property_id: int
    lease_type: str = "standard"
    rent: float = 0.0
    charges: float = 0.0
    deposit: float = 0.0
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    signers: List[SignerCreate] = []

class SignMetadata(BaseModel):
    screen_size: Optional[str] = Field(default=None, alias="screenSize")
    touch_device: bool = Field(default=False, alias="touchDevice")

    model_config = {"populate_by_name": True}

class SignRequest(BaseModel):
    signature_image: Optional[str] = None
    metadata: Optional[SignMetadata] = None

class TransitionRequest(BaseModel):
    force: bool = False
    notice_given_on: Optional[date] = None
