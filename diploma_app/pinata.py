# diploma_app/pinata.py
import json
from typing import Any, Dict, Mapping, Optional

import requests

from diploma_app.errors import PinningFailed
from diploma_app.metadata import IPFS_SCHEME, DiplomaCore, build_metadata
from diploma_app.settings import settings

PINATA_BASE_URL = "https://api.pinata.cloud"
PIN_JSON_URL = f"{PINATA_BASE_URL}/pinning/pinJSONToIPFS"


def _auth_headers() -> Dict[str, str]:
    """
    Build authorization headers for Pinata.
    """
    headers = {}
    if settings.PINATA_JWT:
        headers["Authorization"] = f"Bearer {settings.PINATA_JWT}"
    elif settings.PINATA_API_KEY and settings.PINATA_API_SECRET:
        headers["pinata_api_key"] = settings.PINATA_API_KEY
        headers["pinata_secret_api_key"] = settings.PINATA_API_SECRET
    else:
        raise PinningFailed("Pinata credentials not configured")
    return headers


def pin_json(data: dict, metadata: Optional[dict] = None) -> dict:
    """
    Pins JSON data to Pinata and returns the API JSON response.
    """
    headers = _auth_headers()
    headers["Content-Type"] = "application/json"

    payload = {"pinataContent": data}
    if metadata:
        payload["pinataMetadata"] = metadata

    try:
        res = requests.post(PIN_JSON_URL, headers=headers, data=json.dumps(payload), timeout=60)
        res.raise_for_status()
        return res.json()
    except requests.RequestException as e:
        raise PinningFailed(f"Pinata JSON upload failed: {e}") from e


def pin_metadata(core: DiplomaCore, extra: Optional[Mapping[str, Any]] = None) -> str:
    """
    Pins the diploma metadata document and returns its ipfs:// URI.
    Same JSON as metadata.encode(), stored on IPFS instead of inline.
    """
    document = build_metadata(core, extra)
    res = pin_json(document, metadata={"name": document["name"]})
    cid = res.get("IpfsHash") or res.get("ipfsHash")
    if not cid:
        raise PinningFailed("Pinata did not return CID")
    return IPFS_SCHEME + cid
