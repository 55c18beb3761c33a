"""
Hashing and identity helpers for the bid ledger.

Identities are 20-byte addresses rendered as lowercase ``0x`` hex strings,
derived Ethereum-style from the last 20 bytes of a Keccak-256 digest.
Human-readable labels (``alice``, ``owner``) are mapped to addresses with
``address_from_label`` so the CLI and tests can name participants.

Keccak-256 is also used to fingerprint the public bid history, so a stored
auction can be checked for tampering when it is loaded back.
"""

import re

from Crypto.Hash import keccak


ADDRESS_SIZE = 20
ADDRESS_PATTERN = re.compile(r"0[xX][0-9a-fA-F]{%d}" % (2 * ADDRESS_SIZE))


# =============================================================================
# Hashing
# =============================================================================


def keccak256(data: bytes) -> bytes:
    """
    Compute Keccak-256 hash (Ethereum-style).

    Used for: address derivation and bid history fingerprints.
    """
    k = keccak.new(digest_bits=256)
    k.update(data)
    return k.digest()


# =============================================================================
# Addresses
# =============================================================================


def address_from_label(label: str) -> str:
    """
    Derive a deterministic address from a human-readable label.

    Address = last 20 bytes of keccak256(label), hex-encoded with 0x prefix.
    """
    return bytes_to_hex(keccak256(label.encode("utf-8"))[-ADDRESS_SIZE:])


def is_valid_address(address: str) -> bool:
    """Check if string is a valid address format."""
    if not isinstance(address, str):
        return False
    return ADDRESS_PATTERN.fullmatch(address) is not None


def normalize_address(address: str) -> str:
    """
    Canonical form of an address (lowercase, 0x prefix).

    Raises:
        ValueError: if the string is not a valid address
    """
    if not is_valid_address(address):
        raise ValueError(f"Invalid address: {address!r}")
    return "0x" + address[2:].lower()


def resolve_identity(name_or_address: str) -> str:
    """Accept either an address or a label and return an address."""
    if is_valid_address(name_or_address):
        return normalize_address(name_or_address)
    return address_from_label(name_or_address)


# =============================================================================
# Utility Functions
# =============================================================================


def bytes_to_hex(data: bytes) -> str:
    """Convert bytes to hex string with 0x prefix."""
    return "0x" + data.hex()


def short(address: str, length: int = 10) -> str:
    """Abbreviate an address for log lines."""
    return address[:length] + "..."


__all__ = [
    "ADDRESS_SIZE",
    "keccak256",
    "address_from_label",
    "is_valid_address",
    "normalize_address",
    "resolve_identity",
    "bytes_to_hex",
    "short",
]
