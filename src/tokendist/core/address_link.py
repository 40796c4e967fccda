"""
Address link protocol - proofs that a contributor key authorizes a destination.

A contributor signs the ASCII text of their new destination address (or the
literal ``DELEGATION``) with the secp256k1 key behind their contributor
address. Two message framings are accepted:

- BITCOIN:  sha256(sha256(b"\\x18Bitcoin Signed Message:\\n" + varint(len) + msg))
- ETHEREUM: keccak256(b"\\x19Ethereum Signed Message:\\n" + str(len) + msg)

Recovery yields the signer's public key; the signer address is the last 20
bytes of keccak256(x || y) regardless of framing. Malformed signatures never
raise, they simply recover nothing.
"""

from __future__ import annotations

import hashlib
import logging
from enum import IntEnum
from typing import NamedTuple

from ecdsa import SECP256k1, SigningKey
from ecdsa.keys import MalformedPointError
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError

from tokendist.core.addresses import (
    address_from_public_key,
    keccak256,
    normalize_address,
    parse_ascii_address,
)
from tokendist.core.constants import DELEGATION_TOKEN
from tokendist.core.exceptions import MalformedAddressError

logger = logging.getLogger(__name__)

_CURVE_ORDER = SECP256k1.order

BITCOIN_MESSAGE_PREFIX = b"\x18Bitcoin Signed Message:\n"
ETHEREUM_MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n"


class ChainKind(IntEnum):
    """Message framing selector carried by redemption requests."""
    BITCOIN = 0
    ETHEREUM = 1


class SignatureParts(NamedTuple):
    """Recoverable ECDSA signature: recovery byte ``v`` (27/28) and the (r, s) pair."""
    v: int
    r: int
    s: int

    def to_hex(self) -> str:
        """Serialize as 65-byte r || s || v hex."""
        return (self.r.to_bytes(32, "big") + self.s.to_bytes(32, "big") + bytes([self.v])).hex()

    @classmethod
    def from_hex(cls, signature_hex: str) -> "SignatureParts":
        raw = bytes.fromhex(signature_hex[2:] if signature_hex.startswith("0x") else signature_hex)
        if len(raw) != 65:
            raise ValueError("Signature hex must be 65 bytes (r || s || v).")
        return cls(v=raw[64], r=int.from_bytes(raw[:32], "big"), s=int.from_bytes(raw[32:64], "big"))


def _varint(length: int) -> bytes:
    if length < 0xFD:
        return bytes([length])
    if length <= 0xFFFF:
        return b"\xfd" + length.to_bytes(2, "little")
    if length <= 0xFFFFFFFF:
        return b"\xfe" + length.to_bytes(4, "little")
    return b"\xff" + length.to_bytes(8, "little")


def link_message_hash(chain_kind: ChainKind | int, message: bytes) -> bytes:
    """
    Frame and hash a message the way the selected wallet family signs it.

    The Ethereum framing embeds the decimal byte length, so a 40-character
    destination and its 42-character ``0x`` form hash to different digests.

    Args:
        chain_kind: ChainKind.BITCOIN or ChainKind.ETHEREUM (0 / 1)
        message: Raw message bytes (the ASCII destination or ``DELEGATION``)

    Returns:
        32-byte digest that was signed
    """
    kind = ChainKind(chain_kind)
    if kind is ChainKind.BITCOIN:
        framed = BITCOIN_MESSAGE_PREFIX + _varint(len(message)) + message
        return hashlib.sha256(hashlib.sha256(framed).digest()).digest()
    framed = ETHEREUM_MESSAGE_PREFIX + str(len(message)).encode("ascii") + message
    return keccak256(framed)


def _recovery_id(v: int) -> int | None:
    if v in (27, 28):
        return v - 27
    if v in (0, 1):
        return v
    return None


def recover_address(digest: bytes, signature: SignatureParts) -> str | None:
    """
    Recover the signer address from a digest and a recoverable signature.

    Returns:
        Lowercase ``0x`` address, or None when the recovery parameters are
        malformed (bad ``v``, ``r``/``s`` out of range, ``r`` not on the curve)
    """
    recid = _recovery_id(signature.v)
    r, s = signature.r, signature.s
    if recid is None or len(digest) != 32:
        return None
    if not (1 <= r < _CURVE_ORDER) or not (1 <= s < _CURVE_ORDER):
        return None
    try:
        public_key = keys.Signature(vrs=(recid, r, s)).recover_public_key_from_msg_hash(digest)
    except (BadSignature, ValidationError) as exc:
        logger.debug("Signature recovery failed: %s", exc, extra={"event": "address_link.recover_failed"})
        return None
    return address_from_public_key(public_key.to_bytes())


def _matches(claimed_signer: str, recovered: str | None) -> bool:
    if recovered is None:
        return False
    try:
        return normalize_address(claimed_signer) == recovered
    except ValueError:
        return False


def verify_linked_address(
    claimed_signer: str,
    chain_kind: ChainKind | int,
    payload: str | bytes,
    signature: SignatureParts,
) -> bool:
    """
    Check that ``claimed_signer`` signed the ASCII destination ``payload``.

    The payload must parse as an address (40 or 42 hex characters, optional
    0x prefix); a malformed payload fails the whole check.
    """
    raw = payload.encode("ascii", errors="replace") if isinstance(payload, str) else bytes(payload)
    try:
        parse_ascii_address(raw)
    except MalformedAddressError:
        return False
    try:
        digest = link_message_hash(chain_kind, raw)
    except ValueError:
        return False
    return _matches(claimed_signer, recover_address(digest, signature))


def verify_delegation_proof(
    claimed_signer: str,
    chain_kind: ChainKind | int,
    signature: SignatureParts,
) -> bool:
    """Check that ``claimed_signer`` signed the fixed ``DELEGATION`` token."""
    try:
        digest = link_message_hash(chain_kind, DELEGATION_TOKEN)
    except ValueError:
        return False
    return _matches(claimed_signer, recover_address(digest, signature))


class AddressLinkProtocol:
    """Verification capability injected into the redemption ledger."""

    def verify_linked_address(
        self,
        claimed_signer: str,
        chain_kind: ChainKind | int,
        payload: str | bytes,
        signature: SignatureParts,
    ) -> bool:
        verified = verify_linked_address(claimed_signer, chain_kind, payload, signature)
        logger.debug(
            "Linked address proof checked",
            extra={"event": "address_link.verify", "signer": claimed_signer[:10], "ok": verified},
        )
        return verified

    def verify_delegation_proof(
        self,
        claimed_signer: str,
        chain_kind: ChainKind | int,
        signature: SignatureParts,
    ) -> bool:
        verified = verify_delegation_proof(claimed_signer, chain_kind, signature)
        logger.debug(
            "Delegation proof checked",
            extra={"event": "address_link.delegation", "signer": claimed_signer[:10], "ok": verified},
        )
        return verified


# ==================== Signing helpers ====================


def _load_signing_key(private_hex: str) -> SigningKey:
    raw = bytes.fromhex(private_hex[2:] if private_hex.startswith("0x") else private_hex)
    try:
        return SigningKey.from_string(raw, curve=SECP256k1)
    except MalformedPointError as exc:
        raise ValueError("Private key must be 32 bytes within the curve order.") from exc


def address_from_private_key(private_hex: str) -> str:
    """Derive the account address controlled by a hex private key."""
    verifying_key = _load_signing_key(private_hex).get_verifying_key()
    return address_from_public_key(verifying_key.to_string())


def sign_link_message(
    private_hex: str,
    chain_kind: ChainKind | int,
    message: str | bytes,
) -> SignatureParts:
    """
    Sign a destination string (or ``DELEGATION``) for offline redemption.

    Produces a deterministic low-S signature and the recovery byte that
    makes ``recover_address`` return the signer.
    """
    raw = message.encode("ascii") if isinstance(message, str) else bytes(message)
    digest = link_message_hash(chain_kind, raw)
    signing_key = _load_signing_key(private_hex)
    signature = keys.PrivateKey(signing_key.to_string()).sign_msg_hash(digest)
    return SignatureParts(v=27 + signature.v, r=signature.r, s=signature.s)
