from __future__ import annotations

import base64
import json

import pytest

from diploma_app.metadata import DATA_URI_PREFIX, DiplomaCore, build_metadata, decode, encode, to_display_url
from tests.conftest import CORE


def test_encode_is_a_base64_json_data_uri() -> None:
    uri = encode(CORE)
    assert uri.startswith(DATA_URI_PREFIX)

    payload = json.loads(base64.b64decode(uri[len(DATA_URI_PREFIX):]))
    assert payload["name"] == "Ada Lovelace - Mathematics"
    assert "University of London" in payload["description"]
    assert "1843-12-10" in payload["description"]
    assert payload["attributes"] == [
        {"trait_type": "Student", "value": "Ada Lovelace"},
        {"trait_type": "Course", "value": "Mathematics"},
        {"trait_type": "Institution", "value": "University of London"},
        {"trait_type": "GraduationDate", "value": "1843-12-10"},
    ]


def test_encode_is_deterministic() -> None:
    extra = {"image": "ipfs://img", "external_url": "https://example.edu"}
    assert encode(CORE, extra) == encode(CORE, dict(extra))
    assert encode(CORE) == encode(DiplomaCore(*CORE.as_tuple()))


def test_extra_fields_are_merged_and_win_on_collision() -> None:
    payload = decode(encode(CORE, {"image": "ipfs://img", "name": "Custom"}))
    assert payload["image"] == "ipfs://img"
    assert payload["name"] == "Custom"
    assert len(payload["attributes"]) == 4


def test_non_ascii_fields_survive_encoding() -> None:
    core = DiplomaCore("João Conceição", "Engenharia", "Universidade de São Paulo", "2024-07-01")
    payload = decode(encode(core))
    assert payload["name"] == "João Conceição - Engenharia"


def test_build_metadata_does_not_mutate_extra() -> None:
    extra = {"image": "x"}
    build_metadata(CORE, extra)
    assert extra == {"image": "x"}


def test_decode_rejects_other_uris() -> None:
    with pytest.raises(ValueError):
        decode("ipfs://cid")


def test_to_display_url_rewrites_ipfs() -> None:
    assert to_display_url("ipfs://bafyCID/meta.json") == "https://ipfs.io/ipfs/bafyCID/meta.json"
    assert to_display_url("ipfs://cid", gateway="https://gw.example/ipfs/") == "https://gw.example/ipfs/cid"


@pytest.mark.parametrize(
    "uri",
    ["ipfs://cid", "https://example.com/1.json", "data:application/json;base64,e30=", "ar://tx", ""],
)
def test_to_display_url_is_idempotent(uri: str) -> None:
    once = to_display_url(uri)
    assert to_display_url(once) == once


def test_to_display_url_passes_other_schemes_through() -> None:
    assert to_display_url("https://example.com/1.json") == "https://example.com/1.json"
    assert to_display_url("") == ""
