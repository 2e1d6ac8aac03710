"""
Contract instance creation utilities.
"""

import json

from web3 import AsyncWeb3
from web3.contract import AsyncContract

from .config_loader import resolve_path


def load_abi(abi_path: str) -> list:
    """Read the "abi" list from a JSON interface file."""
    with open(resolve_path(abi_path), "r", encoding="utf-8") as file:
        interface = json.load(file)
    return interface["abi"]


def create_contract_instance(address: str, abi_path: str, w3: AsyncWeb3) -> AsyncContract:
    """
    Create and return a Web3 contract instance.

    Args:
        address: The address of the contract.
        abi_path: Path to the ABI JSON file.
        w3: Web3 instance the contract is bound to.

    Returns:
        Web3 contract instance.
    """
    return w3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=load_abi(abi_path))
