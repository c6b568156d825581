#!/usr/bin/env python3
"""
Unit tests for token metadata URI handling and the metadata cache reader
"""

import asyncio
import base64
import json

import pytest

from api.services.metadata import MetadataService, decode_data_uri, resolve_uri, to_display_metadata

GATEWAY = "https://gw.example/ipfs/"
NFT = "0x" + "d" * 40


def inline_json(payload):
    encoded = base64.b64encode(json.dumps(payload).encode()).decode()
    return "data:application/json;base64," + encoded


class TestResolveUri:

    @pytest.mark.parametrize("uri, expected", [
        ("ipfs://QmHash/1.json", GATEWAY + "QmHash/1.json"),
        ("ipfs://ipfs/QmHash", GATEWAY + "QmHash"),
        ("ipfs/QmHash", GATEWAY + "QmHash"),
        ("ar://tx-id", "https://arweave.net/tx-id"),
        ("https://example.com/1.png", "https://example.com/1.png"),
        ("", ""),
        (None, None),
    ])
    def test_uri_forms(self, uri, expected):
        assert resolve_uri(uri, gateway=GATEWAY) == expected

    def test_gateway_without_trailing_slash(self):
        assert resolve_uri("ipfs://QmHash", gateway="https://gw.example/ipfs") == GATEWAY + "QmHash"

    def test_data_uri_is_left_alone(self):
        uri = inline_json({"name": "Tide"})
        assert resolve_uri(uri, gateway=GATEWAY) == uri


class TestDecodeDataUri:

    def test_inline_json(self):
        assert decode_data_uri(inline_json({"name": "Tide", "image": "ipfs://QmTide"})) == {
            "name": "Tide",
            "image": "ipfs://QmTide",
        }

    @pytest.mark.parametrize("uri", [
        None,
        "",
        "ipfs://QmHash",
        "data:application/json;base64,not-base64!!",
        "data:application/json;base64," + base64.b64encode(b"{broken").decode(),
    ])
    def test_not_inline_json(self, uri):
        assert decode_data_uri(uri) is None


class TestDisplayMetadata:

    def test_cache_row_fields(self):
        row = {
            "name": "Tide",
            "description": "Low water",
            "image_uri": "ipfs://QmTide",
            "animation_uri": None,
            "attributes": [{"trait_type": "Artist", "value": "Ana"}],
            "token_uri": "ipfs://QmMeta",
        }
        display = to_display_metadata(row)
        assert display["title"] == "Tide"
        assert display["image"].endswith("/QmTide")
        assert display["artist"] == "Ana"
        assert display["token_uri"] == "ipfs://QmMeta"

    def test_missing_fields_come_from_inline_token_uri(self):
        row = {
            "name": None,
            "image_uri": None,
            "token_uri": inline_json({
                "name": "On-chain",
                "description": "Stored in the contract",
                "image": "ar://image-tx",
                "attributes": [{"trait_type": "creator", "value": "0xabc"}],
            }),
        }
        display = to_display_metadata(row)
        assert display["name"] == display["title"] == "On-chain"
        assert display["description"] == "Stored in the contract"
        assert display["image"] == "https://arweave.net/image-tx"
        assert display["creator"] == "0xabc"

    def test_row_fields_win_over_inline(self):
        row = {"name": "Cached", "token_uri": inline_json({"name": "Inline", "description": "From chain"})}
        display = to_display_metadata(row)
        assert display["name"] == "Cached"
        assert display["description"] == "From chain"

    def test_non_object_inline_json_is_ignored(self):
        display = to_display_metadata({"name": "Tide", "token_uri": inline_json([1, 2])})
        assert display["name"] == "Tide"
        assert display["attributes"] is None


class TestMetadataService:

    def test_cached_row_is_shaped(self, provider):
        provider.nft_metadata[(NFT, "7")] = {"name": "Tide", "image_uri": "https://img.example/7.png"}
        result = asyncio.run(MetadataService(provider).get(NFT, "7"))
        assert result["title"] == "Tide"
        assert result["image"] == "https://img.example/7.png"

    def test_missing_row(self, provider):
        assert asyncio.run(MetadataService(provider).get(NFT, "8")) is None
