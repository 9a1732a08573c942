# diploma_app/metadata.py
import base64
import json
from dataclasses import dataclass
from typing import Any, Mapping, Optional

DATA_URI_PREFIX = "data:application/json;base64,"
IPFS_SCHEME = "ipfs://"
DEFAULT_GATEWAY = "https://ipfs.io/ipfs/"


@dataclass(frozen=True)
class DiplomaCore:
    student_name: str
    course: str
    institution: str
    graduation_date: str

    def as_tuple(self) -> tuple:
        """Positional form expected by the contract's core struct."""
        return (self.student_name, self.course, self.institution, self.graduation_date)


def build_metadata(core: DiplomaCore, extra: Optional[Mapping[str, Any]] = None) -> dict:
    metadata = {
        "name": f"{core.student_name} - {core.course}",
        "description": f"Diploma issued by {core.institution} on {core.graduation_date}",
        "attributes": [
            {"trait_type": "Student", "value": core.student_name},
            {"trait_type": "Course", "value": core.course},
            {"trait_type": "Institution", "value": core.institution},
            {"trait_type": "GraduationDate", "value": core.graduation_date},
        ],
    }
    # caller fields win on collision
    metadata.update(extra or {})
    return metadata


def encode(core: DiplomaCore, extra: Optional[Mapping[str, Any]] = None) -> str:
    """
    Self-contained token URI: data:application/json;base64,<payload>.
    Compact separators keep the output byte-identical for identical input.
    """
    payload = json.dumps(build_metadata(core, extra), separators=(",", ":"), ensure_ascii=False)
    b64 = base64.b64encode(payload.encode("utf-8")).decode("ascii")
    return DATA_URI_PREFIX + b64


def decode(uri: str) -> dict:
    """Inverse of encode() for data URIs produced here."""
    if not uri.startswith(DATA_URI_PREFIX):
        raise ValueError("not a base64 JSON data URI")
    return json.loads(base64.b64decode(uri[len(DATA_URI_PREFIX):]).decode("utf-8"))


def to_display_url(uri: str, gateway: str = DEFAULT_GATEWAY) -> str:
    if not uri:
        return ""
    if uri.startswith(IPFS_SCHEME):
        return gateway + uri[len(IPFS_SCHEME):]
    return uri
