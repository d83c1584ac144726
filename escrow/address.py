"""
Shielded Address Codec
======================

Bech32m encoding of shielded addresses, e.g.

    mn_shield-addr_test1x08854vl...

The payload is the recipient's 32-byte coin public key followed by its
encryption public key. Only the coin public key is needed to create an
escrow.

Checksums and bit regrouping come from the `bech32` package. Addresses
are longer than the 90 characters classic bech32 allows, so the string
is split here rather than through bech32_decode, which applies that cap.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Tuple

from bech32 import CHARSET, Encoding, bech32_encode, bech32_verify_checksum, convertbits

from .config import NetworkId
from .errors import InvalidAddress


SHIELDED_ADDRESS_PREFIX = "mn_shield-addr"
COIN_PUBLIC_KEY_LEN = 32
CHECKSUM_LEN = 6


def bech32m_encode(hrp: str, payload: bytes) -> str:
    return bech32_encode(hrp, convertbits(payload, 8, 5), Encoding.BECH32M)


def bech32m_decode(text: str) -> Tuple[str, bytes]:
    """Decode to (hrp, payload bytes). Raises InvalidAddress."""
    if any(ord(c) < 33 or ord(c) > 126 for c in text):
        raise InvalidAddress("Address contains invalid characters")
    if text.lower() != text and text.upper() != text:
        raise InvalidAddress("Address mixes upper and lower case")
    text = text.lower()

    pos = text.rfind('1')
    if pos < 1 or pos + CHECKSUM_LEN + 1 > len(text):
        raise InvalidAddress("Address has no separator or is too short")
    hrp = text[:pos]
    try:
        data = [CHARSET.index(c) for c in text[pos + 1:]]
    except ValueError:
        raise InvalidAddress("Address contains characters outside the bech32 charset")

    if bech32_verify_checksum(hrp, data) != Encoding.BECH32M:
        raise InvalidAddress("Address checksum is invalid")

    payload = convertbits(data[:-CHECKSUM_LEN], 5, 8, False)
    if payload is None:
        raise InvalidAddress("Address payload has invalid padding")
    return hrp, bytes(payload)


# =============================================================================
# SHIELDED ADDRESSES
# =============================================================================

@dataclass(frozen=True)
class ShieldedAddress:
    network_id: NetworkId
    coin_public_key: bytes
    encryption_public_key: bytes

    def encode(self) -> str:
        return encode_shielded_address(
            self.coin_public_key, self.encryption_public_key, self.network_id
        )


def _network_for_hrp(hrp: str) -> NetworkId:
    if not hrp.startswith(SHIELDED_ADDRESS_PREFIX):
        raise InvalidAddress(f"Not a shielded address prefix: {hrp}")
    suffix = hrp[len(SHIELDED_ADDRESS_PREFIX):]
    for network in NetworkId:
        if network.address_suffix == suffix:
            return network
    raise InvalidAddress(f"Unknown network in address prefix: {hrp}")


def parse_shielded_address(
    address: str,
    expected_network: Optional[NetworkId] = None
) -> ShieldedAddress:
    """
    Parse a bech32m shielded address into its key material.

    Raises InvalidAddress on any malformed input, including an address
    for a different network than `expected_network`.
    """
    if not isinstance(address, str) or not address.strip():
        raise InvalidAddress("Address is empty")

    hrp, payload = bech32m_decode(address.strip())
    network = _network_for_hrp(hrp)

    if expected_network is not None and network != expected_network:
        raise InvalidAddress(
            f"Address is for {network.value}, expected {expected_network.value}"
        )
    if len(payload) <= COIN_PUBLIC_KEY_LEN:
        raise InvalidAddress(
            f"Address payload too short ({len(payload)} bytes)"
        )

    return ShieldedAddress(
        network_id=network,
        coin_public_key=payload[:COIN_PUBLIC_KEY_LEN],
        encryption_public_key=payload[COIN_PUBLIC_KEY_LEN:],
    )


def encode_shielded_address(
    coin_public_key: bytes,
    encryption_public_key: bytes,
    network_id: NetworkId
) -> str:
    if len(coin_public_key) != COIN_PUBLIC_KEY_LEN:
        raise ValueError("coin_public_key must be 32 bytes")
    if not encryption_public_key:
        raise ValueError("encryption_public_key must not be empty")
    hrp = SHIELDED_ADDRESS_PREFIX + network_id.address_suffix
    return bech32m_encode(hrp, coin_public_key + encryption_public_key)
