"""
Address handling - 20-byte account identifiers

Parses the ASCII destination strings carried by redemption requests,
normalizes addresses to their canonical lowercase ``0x`` form and applies
EIP-55 mixed-case checksums for display.

Address Format:
- Raw:      7a8b9c0d1e2f3a4b5c6d7e8f9a0b1c2d3e4f5a6b
- Prefixed: 0x7a8b9c0d1e2f3a4b5c6d7e8f9a0b1c2d3e4f5a6b
- Checksum: 0x7A8b9C0d1E2f3A4b5C6D7e8F9a0B1c2D3e4F5A6b
"""

from __future__ import annotations

from Crypto.Hash import keccak

from tokendist.core.exceptions import MalformedAddressError

_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


def keccak256(data: bytes) -> bytes:
    """Compute keccak256 hash (same as Ethereum)."""
    k = keccak.new(digest_bits=256)
    k.update(data)
    return k.digest()


def _hex_body(text: str) -> str | None:
    """Return the 40 hex characters of ``text`` or None if it is not an address."""
    if len(text) == 42:
        if text[:2] not in ("0x", "0X"):
            return None
        body = text[2:]
    elif len(text) == 40:
        body = text
    else:
        return None
    if not all(char in _HEX_DIGITS for char in body):
        return None
    return body


def parse_ascii_address(text: str | bytes) -> str:
    """
    Parse the ASCII representation of a destination address.

    Args:
        text: 40 hex characters, or 42 with a leading ``0x``/``0X``

    Returns:
        Canonical lowercase ``0x`` address

    Raises:
        MalformedAddressError: If length or characters are invalid
    """
    if isinstance(text, bytes):
        try:
            text = text.decode("ascii")
        except UnicodeDecodeError as exc:
            raise MalformedAddressError("Address payload is not ASCII") from exc
    body = _hex_body(text)
    if body is None:
        raise MalformedAddressError(
            f"Address payload must be 40 hex characters with optional 0x prefix, got {text!r}",
            details={"length": len(text)},
        )
    return "0x" + body.lower()


def is_valid_address(address: str) -> bool:
    return isinstance(address, str) and _hex_body(address) is not None


def normalize_address(address: str) -> str:
    """
    Normalize an address to lowercase ``0x`` form.

    Raises:
        ValueError: If address is invalid
    """
    if not isinstance(address, str):
        raise ValueError(f"Address must be a string, got {type(address).__name__}")
    body = _hex_body(address)
    if body is None:
        raise ValueError(f"Invalid address: {address!r}")
    if body != body.lower() and body != body.upper() and not is_checksum_valid("0x" + body):
        raise ValueError(f"Invalid checksum for address {address!r}")
    return "0x" + body.lower()


def to_checksum_address(address: str) -> str:
    """
    Convert an address to EIP-55 checksummed format.

    Example:
        >>> to_checksum_address("0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed")
        '0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed'
    """
    body = _hex_body(address)
    if body is None:
        raise ValueError(f"Invalid address: {address!r}")
    hex_lower = body.lower()
    address_hash = keccak256(hex_lower.encode("ascii")).hex()

    checksummed = []
    for i, char in enumerate(hex_lower):
        if char in "0123456789":
            checksummed.append(char)
        elif int(address_hash[i], 16) >= 8:
            checksummed.append(char.upper())
        else:
            checksummed.append(char)
    return "0x" + "".join(checksummed)


def is_checksum_valid(address: str) -> bool:
    """
    Verify if address has valid checksum.

    Returns:
        True if checksum is valid or address is all lowercase/uppercase
    """
    body = _hex_body(address)
    if body is None:
        return False
    if body == body.lower() or body == body.upper():
        return True
    return to_checksum_address(address)[2:] == body


def address_from_public_key(public_key: bytes) -> str:
    """Derive the account address from a 64-byte uncompressed public key (x || y)."""
    if len(public_key) != 64:
        raise ValueError("Public key must be 64 bytes (uncompressed without prefix).")
    return "0x" + keccak256(public_key)[-20:].hex()


def contract_address(label: str, *parts: object) -> str:
    """Derive a deterministic contract address from a label and creation parameters."""
    seed = ":".join([label, *(str(part) for part in parts)]).encode("utf-8")
    return "0x" + keccak256(seed)[-20:].hex()
