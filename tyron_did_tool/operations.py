# tyron_did_tool/operations.py
"""Builders for Sidetree-style DID operations (create, update, recover, deactivate)."""

import logging
import re
from typing import Callable, Dict, Any, Iterable, List, Sequence, Tuple
from urllib.parse import urlparse

from .commitment import commit, reveal_value
from .constants import KEY_ID_PATTERN, SUPPORTED_KEY_TYPE
from .crypto_utils import (
    b64url_decode,
    decode_json,
    encode_json,
    generate_key_pair,
    hash_then_encode,
    public_jwk_from_private,
    sign_jws,
)
from .errors import (
    DuplicateKeyIdError,
    InvalidServiceEndpointError,
    KeyFileError,
    MissingPrimaryKeyError,
    ValidationError,
)
from .schemas import (
    CreateOperationInput,
    CreateOperationResult,
    PatchAction,
    PrivateKeys,
    PublicKeyInput,
    ServiceEndpointInput,
    SignedOperation,
)

logger = logging.getLogger(__name__)

KeyGenerator = Callable[[], Tuple[Dict[str, Any], Dict[str, Any]]]

_KEY_ID_RE = re.compile(KEY_ID_PATTERN)


def _check_id(kind: str, value: str) -> None:
    if not isinstance(value, str) or not _KEY_ID_RE.match(value):
        raise ValidationError(f"Invalid {kind} id '{value}': expected 1-50 characters of [A-Za-z0-9_-].")

def validate_public_key_input(public_key_input: Sequence[PublicKeyInput]) -> None:
    """
    Checks key ids and purposes.

    Raises:
        MissingPrimaryKeyError: If no key has both the general and auth purposes.
        DuplicateKeyIdError: If two keys share an id.
        ValidationError: For any other malformed key input.
    """
    seen = set()
    primary = 0
    for key_input in public_key_input:
        _check_id("key", key_input.id)
        if key_input.id in seen:
            raise DuplicateKeyIdError(f"Public key id '{key_input.id}' is used more than once.")
        seen.add(key_input.id)
        if not key_input.purposes:
            raise ValidationError(f"Public key '{key_input.id}' must have at least one purpose.")
        if len(set(key_input.purposes)) != len(key_input.purposes):
            raise ValidationError(f"Public key '{key_input.id}' repeats a purpose.")
        if key_input.is_primary:
            primary += 1
    if primary == 0:
        raise MissingPrimaryKeyError()
    if primary > 1:
        raise ValidationError("Exactly one primary key (general and auth) is allowed.")

def validate_service_input(service_input: Sequence[ServiceEndpointInput]) -> None:
    seen = set()
    for service in service_input:
        _check_id("service", service.id)
        if service.id in seen:
            raise DuplicateKeyIdError(f"Service id '{service.id}' is used more than once.")
        seen.add(service.id)
        if not service.type or len(service.type) > 30:
            raise InvalidServiceEndpointError(f"Service '{service.id}' needs a type of at most 30 characters.")
        parsed = urlparse(service.endpoint)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise InvalidServiceEndpointError(
                f"Service '{service.id}' endpoint '{service.endpoint}' is not an absolute http(s) URI."
            )

def validate_create_input(operation_input: CreateOperationInput) -> None:
    validate_public_key_input(operation_input.public_key_input)
    validate_service_input(operation_input.service_endpoint_input)


def public_key_entry(key_id: str, public_jwk: Dict[str, Any], purposes: Iterable) -> Dict[str, Any]:
    return {
        "id": key_id,
        "type": SUPPORTED_KEY_TYPE,
        "publicKeyJwk": public_jwk,
        "purposes": [getattr(p, "value", p) for p in purposes],
    }

def service_entry(service: ServiceEndpointInput) -> Dict[str, Any]:
    return {"id": service.id, "type": service.type, "serviceEndpoint": service.endpoint}

def add_public_keys_patch(public_keys: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"action": PatchAction.ADD_PUBLIC_KEYS.value, "publicKeys": public_keys}

def remove_public_keys_patch(ids: List[str]) -> Dict[str, Any]:
    return {"action": PatchAction.REMOVE_PUBLIC_KEYS.value, "ids": list(ids)}

def add_services_patch(services: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"action": PatchAction.ADD_SERVICES.value, "services": services}

def remove_services_patch(ids: List[str]) -> Dict[str, Any]:
    return {"action": PatchAction.REMOVE_SERVICES.value, "ids": list(ids)}

def replace_patch(public_keys: List[Dict[str, Any]], services: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"action": PatchAction.REPLACE.value, "document": {"publicKeys": public_keys, "services": services}}


def compute_did_unique_suffix(encoded_suffix_data: str) -> str:
    """Digest of the decoded suffix data bytes."""
    try:
        return hash_then_encode(b64url_decode(encoded_suffix_data))
    except ValueError as e:
        raise ValidationError(f"Suffix data is not base64url: {e}") from e

def compute_delta_hash(encoded_delta: str) -> str:
    try:
        return hash_then_encode(b64url_decode(encoded_delta))
    except ValueError as e:
        raise ValidationError(f"Delta is not base64url: {e}") from e

def _generate_public_keys(
    public_key_input: Sequence[PublicKeyInput],
    key_generator: KeyGenerator
) -> Tuple[List[Dict[str, Any]], Dict[str, Dict[str, Any]]]:
    public_keys = []
    private_keys = {}
    for key_input in public_key_input:
        public_jwk, private_jwk = key_generator()
        public_keys.append(public_key_entry(key_input.id, public_jwk, key_input.purposes))
        private_keys[key_input.id] = private_jwk
    return public_keys, private_keys


def build_create(
    operation_input: CreateOperationInput,
    key_generator: KeyGenerator = generate_key_pair
) -> CreateOperationResult:
    """
    Builds a create operation.

    A key pair is generated for every requested public key, plus one update and
    one recovery key pair whose public halves are only published as commitments.
    The unique suffix is the digest of the encoded suffix data, which binds the
    recovery commitment and the delta hash.

    Args:
        operation_input: Keys and services of the new DID.
        key_generator: Returns (public JWK, private JWK). Defaults to fresh secp256k1 keys.

    Returns:
        The CreateOperationResult, private keys included.

    Raises:
        ValidationError: (or a subclass) if the input is malformed.
    """
    validate_create_input(operation_input)

    public_keys, private_keys = _generate_public_keys(operation_input.public_key_input, key_generator)

    update_public, update_private = key_generator()
    recovery_public, recovery_private = key_generator()
    update_commitment = commit(update_public)
    recovery_commitment = commit(recovery_public)

    patches = [add_public_keys_patch(public_keys)]
    if operation_input.service_endpoint_input:
        patches.append(add_services_patch([service_entry(s) for s in operation_input.service_endpoint_input]))

    delta = {"patches": patches, "updateCommitment": update_commitment}
    encoded_delta = encode_json(delta)

    suffix_data = {
        "deltaHash": compute_delta_hash(encoded_delta),
        "recoveryCommitment": recovery_commitment,
    }
    encoded_suffix_data = encode_json(suffix_data)
    did_unique_suffix = compute_did_unique_suffix(encoded_suffix_data)

    logger.info(f"Built create operation for DID suffix {did_unique_suffix}")
    logger.debug(f"Create delta carries {len(public_keys)} key(s) and {len(patches) - 1} service patch(es)")

    return CreateOperationResult(
        did_unique_suffix=did_unique_suffix,
        private_keys=private_keys,
        update_private_key=update_private,
        recovery_private_key=recovery_private,
        encoded_suffix_data=encoded_suffix_data,
        encoded_delta=encoded_delta,
        update_commitment=update_commitment,
        recovery_commitment=recovery_commitment,
    )


def build_update(
    did_unique_suffix: str,
    update_private_key: Dict[str, Any],
    add_keys: Sequence[PublicKeyInput] = (),
    remove_key_ids: Sequence[str] = (),
    add_services: Sequence[ServiceEndpointInput] = (),
    remove_service_ids: Sequence[str] = (),
    key_generator: KeyGenerator = generate_key_pair
) -> SignedOperation:
    """Builds an update signed by the current update key, committing to the next one."""
    for key_input in add_keys:
        _check_id("key", key_input.id)
    validate_service_input(add_services)

    public_keys, private_keys = _generate_public_keys(add_keys, key_generator)
    patches = []
    if public_keys:
        patches.append(add_public_keys_patch(public_keys))
    if remove_key_ids:
        patches.append(remove_public_keys_patch(list(remove_key_ids)))
    if add_services:
        patches.append(add_services_patch([service_entry(s) for s in add_services]))
    if remove_service_ids:
        patches.append(remove_services_patch(list(remove_service_ids)))
    if not patches:
        raise ValidationError("An update needs at least one patch.")

    update_public = public_jwk_from_private(update_private_key)
    next_public, next_private = key_generator()
    encoded_delta = encode_json({"patches": patches, "updateCommitment": commit(next_public)})
    signed_data = sign_jws(
        {"updateKey": update_public, "deltaHash": compute_delta_hash(encoded_delta)},
        update_private_key
    )
    logger.info(f"Built update operation for DID suffix {did_unique_suffix}")
    return SignedOperation(
        did_unique_suffix=did_unique_suffix,
        signed_data=signed_data,
        reveal_value=reveal_value(update_public),
        encoded_delta=encoded_delta,
        private_keys=private_keys,
        next_update_private_key=next_private,
    )

def build_recover(
    did_unique_suffix: str,
    recovery_private_key: Dict[str, Any],
    public_key_input: Sequence[PublicKeyInput],
    service_endpoint_input: Sequence[ServiceEndpointInput] = (),
    key_generator: KeyGenerator = generate_key_pair
) -> SignedOperation:
    """Builds a recover operation that replaces the whole document and rotates both commitments."""
    validate_public_key_input(public_key_input)
    validate_service_input(service_endpoint_input)

    public_keys, private_keys = _generate_public_keys(public_key_input, key_generator)
    next_update_public, next_update_private = key_generator()
    next_recovery_public, next_recovery_private = key_generator()

    patches = [replace_patch(public_keys, [service_entry(s) for s in service_endpoint_input])]
    encoded_delta = encode_json({"patches": patches, "updateCommitment": commit(next_update_public)})

    recovery_public = public_jwk_from_private(recovery_private_key)
    signed_data = sign_jws(
        {
            "recoveryKey": recovery_public,
            "deltaHash": compute_delta_hash(encoded_delta),
            "recoveryCommitment": commit(next_recovery_public),
        },
        recovery_private_key
    )
    logger.info(f"Built recover operation for DID suffix {did_unique_suffix}")
    return SignedOperation(
        did_unique_suffix=did_unique_suffix,
        signed_data=signed_data,
        reveal_value=reveal_value(recovery_public),
        encoded_delta=encoded_delta,
        private_keys=private_keys,
        next_update_private_key=next_update_private,
        next_recovery_private_key=next_recovery_private,
    )

def build_deactivate(did_unique_suffix: str, recovery_private_key: Dict[str, Any]) -> SignedOperation:
    recovery_public = public_jwk_from_private(recovery_private_key)
    signed_data = sign_jws(
        {"didSuffix": did_unique_suffix, "recoveryKey": recovery_public},
        recovery_private_key
    )
    logger.info(f"Built deactivate operation for DID suffix {did_unique_suffix}")
    return SignedOperation(
        did_unique_suffix=did_unique_suffix,
        signed_data=signed_data,
        reveal_value=reveal_value(recovery_public),
    )


def export_private_keys(result: CreateOperationResult) -> PrivateKeys:
    """Encodes the private key material into the key-file shape."""
    return PrivateKeys(
        private_keys={key_id: encode_json(jwk) for key_id, jwk in result.private_keys.items()},
        update_private_key=encode_json(result.update_private_key),
        recovery_private_key=encode_json(result.recovery_private_key),
    )

def decode_private_key(encoded: str) -> Dict[str, Any]:
    """Inverse of the key-file encoding for a single private JWK."""
    try:
        private_jwk = decode_json(encoded)
    except (ValueError, UnicodeDecodeError) as e:
        raise KeyFileError(f"Could not decode private key: {e}") from e
    if not isinstance(private_jwk, dict) or "d" not in private_jwk:
        raise KeyFileError("Encoded value is not a private JWK.")
    return private_jwk
