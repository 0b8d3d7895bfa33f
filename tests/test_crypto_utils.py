"""Unit tests for crypto_utils module"""

import hashlib
import json

import pytest

from tyron_did_tool.crypto_utils import (
    address_from_private_key,
    b64url_decode,
    b64url_encode,
    canonical_public_jwk,
    canonicalize,
    decode_jws_payload,
    encode_json,
    decode_json,
    generate_key_pair,
    hash_then_encode,
    is_sha256_multihash,
    multihash_sha256,
    normalize_address,
    public_jwk_from_private,
    public_key_from_private_key,
    sign_jws,
    to_checksum_address,
    verify_jws,
)
from tyron_did_tool.constants import MULTIHASH_SHA2_256_HEADER
from tyron_did_tool.errors import InvalidAddressError, InvalidPublicKeyError, ValidationError


def test_b64url_has_no_padding():
    encoded = b64url_encode(b"\xff\xfe")
    assert "=" not in encoded
    assert b64url_decode(encoded) == b"\xff\xfe"

def test_b64url_decode_rejects_standard_alphabet():
    with pytest.raises(ValueError):
        b64url_decode("ab+/")

def test_canonicalize_sorts_keys():
    assert canonicalize({"b": 1, "a": [2, "x"]}) == b'{"a":[2,"x"],"b":1}'

def test_encode_json_decodes_back():
    value = {"patches": [], "updateCommitment": "EiA"}
    assert decode_json(encode_json(value)) == value

def test_multihash_sha256_layout():
    digest = multihash_sha256(b"tyron")
    assert digest[:2] == MULTIHASH_SHA2_256_HEADER
    assert digest[2:] == hashlib.sha256(b"tyron").digest()
    assert is_sha256_multihash(digest)

def test_is_sha256_multihash_rejects_raw_digest():
    assert not is_sha256_multihash(hashlib.sha256(b"tyron").digest())
    assert not is_sha256_multihash(b"\x12\x20short")

def test_hash_then_encode_length():
    assert len(hash_then_encode(b"anything")) == 46

def test_generate_key_pair():
    public_jwk, private_jwk = generate_key_pair()
    assert set(public_jwk) == {"crv", "kty", "x", "y"}
    assert public_jwk["crv"] == "secp256k1"
    assert "d" in private_jwk
    assert public_jwk_from_private(private_jwk) == public_jwk

def test_canonical_public_jwk_drops_extra_members():
    public_jwk, _ = generate_key_pair()
    assert canonical_public_jwk(dict(public_jwk, kid="k1", use="sig")) == public_jwk

@pytest.mark.parametrize("bad_key", [
    "not a dict",
    {"kty": "OKP", "crv": "Ed25519", "x": "abc"},
    {"kty": "EC", "crv": "P-256", "x": "abc", "y": "def"},
    {"kty": "EC", "crv": "secp256k1", "x": "abc"},
])
def test_canonical_public_jwk_rejects(bad_key):
    with pytest.raises(InvalidPublicKeyError):
        canonical_public_jwk(bad_key)

def test_canonical_public_jwk_rejects_private_key():
    _, private_jwk = generate_key_pair()
    with pytest.raises(InvalidPublicKeyError):
        canonical_public_jwk(private_jwk)

def test_sign_and_verify_jws():
    public_jwk, private_jwk = generate_key_pair()
    payload = {"deltaHash": "EiB", "updateKey": public_jwk}
    compact = sign_jws(payload, private_jwk)

    assert compact.count(".") == 2
    assert verify_jws(compact, public_jwk) == payload
    assert decode_jws_payload(compact) == payload
    header = json.loads(b64url_decode(compact.split(".")[0]))
    assert header == {"alg": "ES256K"}

def test_verify_jws_wrong_key():
    _, private_jwk = generate_key_pair()
    other_public, _ = generate_key_pair()
    compact = sign_jws({"a": 1}, private_jwk)
    assert verify_jws(compact, other_public) is None

def test_verify_jws_tampered_payload():
    public_jwk, private_jwk = generate_key_pair()
    header, _, signature = sign_jws({"a": 1}, private_jwk).split(".")
    forged = ".".join([header, b64url_encode(b'{"a":2}'), signature])
    assert verify_jws(forged, public_jwk) is None

def test_decode_jws_payload_garbage():
    assert decode_jws_payload("not-a-jws") is None
    assert decode_jws_payload(None) is None

def test_sign_jws_invalid_key():
    with pytest.raises(ValidationError):
        sign_jws({"a": 1}, {"kty": "EC"})

def test_normalize_address():
    assert normalize_address("ABCDEFABCDEFABCDEFABCDEFABCDEFABCDEFABCD") == "0x" + "abcdef" * 6 + "abcd"
    assert normalize_address("0X" + "AB" * 20) == "0x" + "ab" * 20
    with pytest.raises(InvalidAddressError):
        normalize_address("0x1234")

def test_address_from_private_key():
    private_key = "1" * 64
    public_key = public_key_from_private_key(private_key)
    assert len(public_key) == 66
    assert public_key[:2] in ("02", "03")
    expected = "0x" + hashlib.sha256(bytes.fromhex(public_key)).hexdigest()[24:]
    assert address_from_private_key(private_key) == expected
    assert address_from_private_key("0x" + private_key) == expected
    assert address_from_private_key("0X" + private_key) == expected

def test_address_from_private_key_rejects_malformed():
    with pytest.raises(ValidationError):
        address_from_private_key("xyz")
    with pytest.raises(ValidationError):
        address_from_private_key("0" * 64)

def test_to_checksum_address():
    address = "0x" + "ab" * 10 + "12" * 10
    checksummed = to_checksum_address(address)
    assert len(checksummed) == 40
    assert checksummed.lower() == address[2:]
    assert checksummed[20:] == "12" * 10
    assert to_checksum_address(address.upper().replace("0X", "0x")) == checksummed
    assert to_checksum_address("0x" + "0" * 40) == "0" * 40
