"""Common address helpers for the raffle service."""

from web3 import Web3


def shorten_eth_address(address: str) -> str:
    """Shorten an Ethereum address for display: '0x123456...abcd'.

    Returns the first 6 and last 4 hex characters, separated by '...'.
    Handles addresses with or without '0x' prefix.
    """
    if not address:
        return ""
    addr = address.lower()
    if addr.startswith("0x"):
        addr = addr[2:]
    if len(addr) < 10:
        return f"0x{addr}"
    return f"0x{addr[:6]}...{addr[-4:]}"


def validate_ethereum_address(address: str) -> bool:
    """Validate Ethereum address format (0x + 40 hex characters)."""
    if not isinstance(address, str):
        return False
    if not address.startswith('0x') or len(address) != 42:
        return False
    try:
        int(address[2:], 16)
        return True
    except ValueError:
        return False


def normalize_address(address: str) -> str:
    """Return the EIP-55 checksum form of an address.

    Raises:
        ValueError: If the value is not a 20-byte hex address
    """
    if not validate_ethereum_address(address):
        raise ValueError(f"Invalid Ethereum address: {address!r}")
    return Web3.to_checksum_address(address)
