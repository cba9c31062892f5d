"""Operator key handling: normalization, address derivation, keccak helpers."""

from __future__ import annotations

import re

from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from Crypto.Hash import keccak

from .errors import ConfigError


def keccak256(data: bytes) -> bytes:
    digest = keccak.new(digest_bits=256)
    digest.update(data)
    return digest.digest()


def keccak256_text(value: str) -> str:
    return "0x" + keccak256(value.encode("utf-8")).hex()


def normalize_private_key_hex(value: str) -> str | None:
    stripped = value.strip()
    if stripped.startswith("0x"):
        stripped = stripped[2:]
    if re.fullmatch(r"[a-fA-F0-9]{64}", stripped):
        return stripped.lower()
    return None


def derive_address(private_key_hex: str) -> str:
    normalized = normalize_private_key_hex(private_key_hex)
    if normalized is None:
        raise ConfigError("Operator private key must be 32 bytes of hex.", "Set RUNNER_PRIVATE_KEY to a 0x-prefixed 64-hex-char key.")
    private_value = int.from_bytes(bytes.fromhex(normalized), byteorder="big")
    try:
        # cryptography validates private key range for secp256k1.
        private_key = ec.derive_private_key(private_value, ec.SECP256K1())
    except ValueError as exc:
        raise ConfigError("Operator private key is outside the secp256k1 range.") from exc
    public_key_bytes = private_key.public_key().public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)
    return "0x" + keccak256(public_key_bytes[1:])[-20:].hex()
