# tyron_did_tool/crypto_utils.py
"""
Thin wrappers over the cryptographic libraries the tool relies on:
base64url, JSON canonicalization, sha2-256 multihashes, secp256k1 keys and
ES256K JWS. Everything above this module treats these as black boxes.
"""

import base64
import hashlib
import json
import logging
import re
from typing import Dict, Any, Optional, Tuple

import multicodec
import rfc8785
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from jwcrypto import jwk, jws

from .constants import (
    JWS_ALGORITHM,
    MULTIHASH_SHA2_256_HEADER,
    SHA2_256_CODEC,
    SHA2_256_DIGEST_LENGTH,
    SUPPORTED_CURVE,
)
from .errors import InvalidAddressError, InvalidPublicKeyError, ValidationError

logger = logging.getLogger(__name__)

_B64URL_RE = re.compile(r"^[A-Za-z0-9_-]*$")
_ADDRESS_RE = re.compile(r"^(0[xX])?[0-9a-fA-F]{40}$")
_PRIVATE_KEY_RE = re.compile(r"^(0[xX])?[0-9a-fA-F]{64}$")
_PUBLIC_JWK_FIELDS = ("crv", "kty", "x", "y")


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")

def b64url_decode(data: str) -> bytes:
    """Base64url decoding without padding. Raises ValueError on foreign characters."""
    if not isinstance(data, str) or not _B64URL_RE.match(data):
        raise ValueError("not a base64url string")
    padded = data + '=' * (4 - len(data) % 4) if len(data) % 4 else data
    return base64.urlsafe_b64decode(padded)

def canonicalize(obj: Any) -> bytes:
    """RFC 8785 (JCS) canonical bytes of a JSON value."""
    return rfc8785.dumps(obj)

def encode_json(obj: Any) -> str:
    return b64url_encode(canonicalize(obj))

def decode_json(encoded: str) -> Any:
    return json.loads(b64url_decode(encoded).decode("utf-8"))

def multihash_sha256(data: bytes) -> bytes:
    digest = hashlib.sha256(data).digest()
    return multicodec.add_prefix(SHA2_256_CODEC, bytes([SHA2_256_DIGEST_LENGTH]) + digest)

def is_sha256_multihash(data: bytes) -> bool:
    if len(data) != len(MULTIHASH_SHA2_256_HEADER) + SHA2_256_DIGEST_LENGTH:
        return False
    try:
        return multicodec.get_codec(data) == SHA2_256_CODEC and data.startswith(MULTIHASH_SHA2_256_HEADER)
    except (ValueError, KeyError):
        return False

def hash_then_encode(data: bytes) -> str:
    return b64url_encode(multihash_sha256(data))

def canonicalize_then_hash_then_encode(obj: Any) -> str:
    return hash_then_encode(canonicalize(obj))

def canonical_public_jwk(public_jwk: Dict[str, Any]) -> Dict[str, str]:
    """
    Strips a secp256k1 JWK down to the members that identify the key.

    Raises:
        InvalidPublicKeyError: If the JWK is not a public secp256k1 EC key.
    """
    if not isinstance(public_jwk, dict):
        raise InvalidPublicKeyError("Public key must be a JWK object.")
    if "d" in public_jwk:
        raise InvalidPublicKeyError("Refusing to use a private JWK where a public key is expected.")
    if public_jwk.get("kty") != "EC" or public_jwk.get("crv") != SUPPORTED_CURVE:
        raise InvalidPublicKeyError(f"Public key must be an EC JWK on curve {SUPPORTED_CURVE}.")
    for member in ("x", "y"):
        value = public_jwk.get(member)
        if not isinstance(value, str) or not value or not _B64URL_RE.match(value):
            raise InvalidPublicKeyError(f"Public key member '{member}' is missing or not base64url.")
    return {field: public_jwk[field] for field in _PUBLIC_JWK_FIELDS}

def generate_key_pair() -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Generates a secp256k1 key pair.

    Returns:
        (public JWK, private JWK) as dictionaries.
    """
    key = jwk.JWK.generate(kty='EC', crv=SUPPORTED_CURVE)
    private_jwk = json.loads(key.export_private())
    public_jwk = json.loads(key.export_public())
    return canonical_public_jwk(public_jwk), private_jwk

def public_jwk_from_private(private_jwk: Dict[str, Any]) -> Dict[str, str]:
    public = {k: v for k, v in private_jwk.items() if k != "d"}
    return canonical_public_jwk(public)

def sign_jws(payload: Dict[str, Any], private_jwk: Dict[str, Any]) -> str:
    """Signs the canonical form of `payload` as a compact ES256K JWS."""
    try:
        key = jwk.JWK(**private_jwk)
    except Exception as e:
        raise ValidationError(f"Failed to load private JWK: {e}") from e
    protected_header = {"alg": JWS_ALGORITHM}
    jws_token = jws.JWS(canonicalize(payload))
    jws_token.add_signature(key, None, json.dumps(protected_header))
    return jws_token.serialize(compact=True)

def decode_jws_payload(compact: str) -> Optional[Dict[str, Any]]:
    """Reads the payload of a compact JWS without verifying it."""
    if not isinstance(compact, str):
        return None
    parts = compact.split('.')
    if len(parts) != 3:
        return None
    try:
        payload = json.loads(b64url_decode(parts[1]).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None

def verify_jws(compact: str, public_jwk: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Verifies a compact ES256K JWS with the given public key.

    Returns:
        The decoded payload when the signature is valid, otherwise None.
    """
    try:
        key = jwk.JWK(**canonical_public_jwk(public_jwk))
        jws_token = jws.JWS()
        jws_token.allowed_algs = [JWS_ALGORITHM]
        jws_token.deserialize(compact)
        jws_token.verify(key)
        payload = json.loads(jws_token.payload.decode("utf-8"))
    except InvalidPublicKeyError as e:
        logger.debug(f"JWS verification skipped, bad key: {e}")
        return None
    except jws.InvalidJWSSignature:
        logger.debug("JWS signature verification failed")
        return None
    except (jws.InvalidJWSObject, ValueError, UnicodeDecodeError) as e:
        logger.debug(f"Malformed JWS: {e}")
        return None
    return payload if isinstance(payload, dict) else None

def normalize_address(address: str) -> str:
    """Returns a lower-case, 0x-prefixed 20-byte address."""
    if not isinstance(address, str) or not _ADDRESS_RE.match(address):
        raise InvalidAddressError(f"'{address}' is not a 20-byte hex address.")
    return "0x" + address[-40:].lower()

def to_checksum_address(address: str) -> str:
    """
    Zilliqa checksum form without the 0x prefix, as CreateTransaction takes `toAddr`.

    The i-th hex letter is upper-cased when bit 255 - 6i of sha256(address bytes) is set.
    """
    hex_address = normalize_address(address)[2:]
    digest = int.from_bytes(hashlib.sha256(bytes.fromhex(hex_address)).digest(), "big")
    return "".join(
        c.upper() if not c.isdigit() and digest & (1 << (255 - 6 * i)) else c
        for i, c in enumerate(hex_address)
    )

def _load_private_key(private_key_hex: str) -> ec.EllipticCurvePrivateKey:
    if not isinstance(private_key_hex, str) or not _PRIVATE_KEY_RE.match(private_key_hex):
        raise ValidationError("Private key must be 32 bytes of hex.")
    scalar = int(private_key_hex[-64:], 16)
    try:
        return ec.derive_private_key(scalar, ec.SECP256K1())
    except ValueError as e:
        raise ValidationError(f"Invalid secp256k1 private key: {e}") from e

def public_key_from_private_key(private_key_hex: str) -> str:
    """Compressed secp256k1 public key, hex encoded."""
    public_key = _load_private_key(private_key_hex).public_key()
    return public_key.public_bytes(
        serialization.Encoding.X962,
        serialization.PublicFormat.CompressedPoint
    ).hex()

def address_from_private_key(private_key_hex: str) -> str:
    """Zilliqa address: the last 20 bytes of sha256 over the compressed public key."""
    public_key = bytes.fromhex(public_key_from_private_key(private_key_hex))
    return "0x" + hashlib.sha256(public_key).hexdigest()[24:]
