# diploma_app/schemas.py
from typing import Any, Dict, Optional

from pydantic import BaseModel

from diploma_app.metadata import DiplomaCore


class DiplomaCoreIn(BaseModel):
    student_name: str
    course: str
    institution: str
    graduation_date: str

    def to_core(self) -> DiplomaCore:
        return DiplomaCore(self.student_name, self.course, self.institution, self.graduation_date)

    @classmethod
    def from_core(cls, core: DiplomaCore) -> "DiplomaCoreIn":
        return cls(
            student_name=core.student_name,
            course=core.course,
            institution=core.institution,
            graduation_date=core.graduation_date,
        )


class WalletOut(BaseModel):
    has_capability: bool
    account: Optional[str]
    network_id: Optional[str]


class BindIn(BaseModel):
    address: str
    variant: str = "erc721"


class BindOut(BaseModel):
    address: str
    signer: str
    role_id: str
    is_institution: bool
    balance_of: bool
    uri: bool


class MetadataIn(BaseModel):
    core: DiplomaCoreIn
    extra: Optional[Dict[str, Any]] = None
    pin: bool = False


class MetadataOut(BaseModel):
    uri: str
    display_url: str


class MintIn(BaseModel):
    to: str
    core: DiplomaCoreIn
    metadata_uri: str = ""
    generate_metadata: bool = False
    extra: Optional[Dict[str, Any]] = None


class RevokeIn(BaseModel):
    reason: str = ""


class TxOut(BaseModel):
    tx: str
    token_id: Optional[int] = None


class DiplomaOut(BaseModel):
    token_id: int
    holder: str
    revoked: bool
    revoke_reason: Optional[str]
    token_uri: str
    display_url: str
    core: DiplomaCoreIn


class VerifyOut(BaseModel):
    token_id: int
    account: Optional[str] = None
    valid: bool
