#!/usr/bin/env python3
"""
On-chain detection of Creator Core (ERC721 / ERC1155) contracts.
"""

import logging
from typing import Any, Dict, Optional

from web3 import Web3

logger = logging.getLogger(__name__)

ERC165_INTERFACE_ID = bytes.fromhex("01ffc9a7")
ERC721_INTERFACE_ID = bytes.fromhex("80ac58cd")
ERC1155_INTERFACE_ID = bytes.fromhex("d9b67a26")

CREATOR_CORE_ABI = [
    {
        "name": "supportsInterface",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "interfaceId", "type": "bytes4"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "name",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
    },
    {
        "name": "symbol",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
    },
    {
        "name": "owner",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "name": "tokenURI",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "outputs": [{"name": "", "type": "string"}],
    },
    {
        "name": "uri",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "id", "type": "uint256"}],
        "outputs": [{"name": "", "type": "string"}],
    },
]


def get_contract(w3: Web3, address: str):
    return w3.eth.contract(address=Web3.to_checksum_address(address), abi=CREATOR_CORE_ABI)


def _supports(contract, interface_id: bytes) -> bool:
    try:
        return bool(contract.functions.supportsInterface(interface_id).call())
    except Exception as e:
        logger.debug(f"supportsInterface({interface_id.hex()}) failed on {contract.address}: {e}")
        return False


def _optional_call(contract, fn_name: str) -> Optional[Any]:
    try:
        return getattr(contract.functions, fn_name)().call()
    except Exception:
        return None


def detect_creator_core_contract(w3: Web3, address: str) -> Optional[Dict[str, Any]]:
    """Return contract info for ERC165 + ERC721/ERC1155 contracts, else None"""
    if not Web3.is_address(address):
        return None

    try:
        code = w3.eth.get_code(Web3.to_checksum_address(address))
    except Exception as e:
        logger.debug(f"get_code failed for {address}: {e}")
        return None
    if not code:
        return None

    contract = get_contract(w3, address)
    if not _supports(contract, ERC165_INTERFACE_ID):
        return None

    is_erc721 = _supports(contract, ERC721_INTERFACE_ID)
    is_erc1155 = False if is_erc721 else _supports(contract, ERC1155_INTERFACE_ID)
    if not is_erc721 and not is_erc1155:
        return None

    owner = _optional_call(contract, "owner")
    return {
        "address": address.lower(),
        "type": "ERC721" if is_erc721 else "ERC1155",
        "name": _optional_call(contract, "name") or None,
        "symbol": _optional_call(contract, "symbol") or None,
        "owner": owner.lower() if owner else None,
    }
