# tyron_did_tool/did_document.py
"""
DID resolution.

The operation log anchored in a tyron contract is replayed from its create
operation onwards. Every later operation must reveal the key matching the
commitment left by its predecessor and carry a valid signature by that key,
otherwise it is skipped. A valid deactivate ends the replay.
"""

import copy
import logging
import re
from typing import Callable, Dict, Any, List, Optional
from urllib.parse import urlparse

from pydantic import ValidationError as PydanticValidationError

from .commitment import KeyCommitment, reveal_value
from .constants import (
    DID_CONTENT_TYPE,
    DID_CONTEXT_V1,
    KEY_ID_PATTERN,
    OPERATION_LOG_FIELD,
    SUPPORTED_KEY_TYPE,
)
from .crypto_utils import canonical_public_jwk, decode_json, decode_jws_payload, verify_jws
from .did_scheme import parse_did, short_form
from .errors import CommitmentError, DidError, NotFoundError, TyronDidToolError, ValidationError
from .ledger import LedgerClient
from .operations import compute_delta_hash, compute_did_unique_suffix
from .schemas import (
    Accept,
    AnchoredOperation,
    NetworkNamespace,
    PatchAction,
    PublicKeyPurpose,
    ResolutionInput,
    ResolutionResult,
    TransitionTag,
)

logger = logging.getLogger(__name__)

_KEY_ID_RE = re.compile(KEY_ID_PATTERN)
_PURPOSES = {p.value for p in PublicKeyPurpose}


class InvalidOperation(Exception):
    """An anchored operation that must not be applied. Never leaves this module."""


class DidState:
    """The running result of a replay."""

    def __init__(self, did_unique_suffix: str, update_commitment: KeyCommitment, recovery_commitment: KeyCommitment):
        self.did_unique_suffix = did_unique_suffix
        self.public_keys: List[Dict[str, Any]] = []
        self.services: List[Dict[str, Any]] = []
        self.update_commitment = update_commitment
        self.recovery_commitment = recovery_commitment
        self.deactivated = False
        self.created: Optional[str] = None
        self.updated: Optional[str] = None
        self.version_id: Optional[int] = None
        self.published = True


def _check_public_key(entry: Any) -> Dict[str, Any]:
    if not isinstance(entry, dict) or not _KEY_ID_RE.match(str(entry.get("id", ""))):
        raise InvalidOperation("public key entry without a valid id")
    purposes = entry.get("purposes")
    if not isinstance(purposes, list) or not purposes or not set(purposes) <= _PURPOSES:
        raise InvalidOperation(f"public key '{entry['id']}' has invalid purposes")
    if entry.get("type") != SUPPORTED_KEY_TYPE:
        raise InvalidOperation(f"public key '{entry['id']}' is not of type {SUPPORTED_KEY_TYPE}")
    try:
        jwk = canonical_public_jwk(entry.get("publicKeyJwk"))
    except CommitmentError as e:
        raise InvalidOperation(f"public key '{entry['id']}': {e.message}") from e
    return {"id": entry["id"], "type": SUPPORTED_KEY_TYPE, "publicKeyJwk": jwk, "purposes": list(purposes)}

def _check_service(entry: Any) -> Dict[str, Any]:
    if not isinstance(entry, dict) or not _KEY_ID_RE.match(str(entry.get("id", ""))):
        raise InvalidOperation("service entry without a valid id")
    endpoint = entry.get("serviceEndpoint")
    if not isinstance(entry.get("type"), str) or not isinstance(endpoint, str):
        raise InvalidOperation(f"service '{entry['id']}' is malformed")
    parsed = urlparse(endpoint)
    if not parsed.scheme or not parsed.netloc:
        raise InvalidOperation(f"service '{entry['id']}' endpoint is not an absolute URI")
    return {"id": entry["id"], "type": entry["type"], "serviceEndpoint": endpoint}

def _upsert(entries: List[Dict[str, Any]], new_entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    ids = [e["id"] for e in new_entries]
    if len(set(ids)) != len(ids):
        raise InvalidOperation("patch repeats an id")
    kept = [e for e in entries if e["id"] not in ids]
    return kept + new_entries

def _remove(entries: List[Dict[str, Any]], ids: Any) -> List[Dict[str, Any]]:
    if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
        raise InvalidOperation("remove patch needs a list of ids")
    return [e for e in entries if e["id"] not in ids]

def apply_patches(state: DidState, patches: Any) -> None:
    """
    Applies `patches` to `state` all-or-nothing.

    Raises:
        InvalidOperation: If any patch is malformed. `state` is left untouched.
    """
    if not isinstance(patches, list):
        raise InvalidOperation("delta patches must be a list")
    public_keys = copy.deepcopy(state.public_keys)
    services = copy.deepcopy(state.services)

    for patch in patches:
        action = patch.get("action") if isinstance(patch, dict) else None
        if action == PatchAction.ADD_PUBLIC_KEYS.value:
            entries = patch.get("publicKeys")
            if not isinstance(entries, list):
                raise InvalidOperation("add-public-keys needs a list")
            public_keys = _upsert(public_keys, [_check_public_key(e) for e in entries])
        elif action == PatchAction.REMOVE_PUBLIC_KEYS.value:
            public_keys = _remove(public_keys, patch.get("ids"))
        elif action == PatchAction.ADD_SERVICES.value:
            entries = patch.get("services")
            if not isinstance(entries, list):
                raise InvalidOperation("add-services needs a list")
            services = _upsert(services, [_check_service(e) for e in entries])
        elif action == PatchAction.REMOVE_SERVICES.value:
            services = _remove(services, patch.get("ids"))
        elif action == PatchAction.REPLACE.value:
            document = patch.get("document")
            if not isinstance(document, dict):
                raise InvalidOperation("replace needs a document")
            public_keys = _upsert([], [_check_public_key(e) for e in document.get("publicKeys") or []])
            services = _upsert([], [_check_service(e) for e in document.get("services") or []])
        else:
            raise InvalidOperation(f"unknown patch action {action!r}")

    state.public_keys = public_keys
    state.services = services

def _decode_delta(encoded_delta: Any, expected_hash: Any) -> Dict[str, Any]:
    if not isinstance(encoded_delta, str):
        raise InvalidOperation("missing delta")
    try:
        if compute_delta_hash(encoded_delta) != expected_hash:
            raise InvalidOperation("delta does not match its signed hash")
        delta = decode_json(encoded_delta)
    except (ValidationError, ValueError, UnicodeDecodeError) as e:
        raise InvalidOperation(f"undecodable delta: {e}") from e
    if not isinstance(delta, dict) or not isinstance(delta.get("updateCommitment"), str):
        raise InvalidOperation("delta carries no update commitment")
    return delta

def _key_commitment(value: str) -> KeyCommitment:
    try:
        return KeyCommitment(value)
    except CommitmentError as e:
        raise InvalidOperation(e.message) from e

def _verified_payload(params: Dict[str, str], key_field: str, commitment: KeyCommitment) -> Dict[str, Any]:
    """Checks that `commitment` authorizes the revealed key and that the key signed the data."""
    signed_data = params.get("signedData")
    claimed = decode_jws_payload(signed_data)
    if claimed is None:
        raise InvalidOperation("signed data is not a JWS")
    revealed_key = claimed.get(key_field)
    if not commitment.authorizes(revealed_key):
        raise InvalidOperation(f"revealed {key_field} does not match the stored commitment")
    if params.get("revealValue") != reveal_value(revealed_key):
        raise InvalidOperation("reveal value does not match the revealed key")
    payload = verify_jws(signed_data, revealed_key)
    if payload is None:
        raise InvalidOperation("signature does not verify with the revealed key")
    return payload


def _apply_create(operation: AnchoredOperation, did_unique_suffix: str) -> DidState:
    params = operation.params
    encoded_suffix_data = params.get("encodedSuffixData")
    if not isinstance(encoded_suffix_data, str):
        raise InvalidOperation("missing suffix data")
    try:
        if compute_did_unique_suffix(encoded_suffix_data) != did_unique_suffix:
            raise InvalidOperation("suffix data belongs to another DID")
        suffix_data = decode_json(encoded_suffix_data)
    except (ValidationError, ValueError, UnicodeDecodeError) as e:
        raise InvalidOperation(f"undecodable suffix data: {e}") from e
    if not isinstance(suffix_data, dict) or not isinstance(suffix_data.get("recoveryCommitment"), str):
        raise InvalidOperation("suffix data carries no recovery commitment")

    delta = _decode_delta(params.get("encodedDelta"), suffix_data.get("deltaHash"))
    if params.get("recoveryCommitment") != suffix_data["recoveryCommitment"]:
        raise InvalidOperation("recovery commitment parameter disagrees with the suffix data")
    if params.get("updateCommitment") != delta["updateCommitment"]:
        raise InvalidOperation("update commitment parameter disagrees with the delta")

    state = DidState(
        did_unique_suffix,
        _key_commitment(delta["updateCommitment"]),
        _key_commitment(suffix_data["recoveryCommitment"]),
    )
    apply_patches(state, delta.get("patches"))
    return state

def _apply_update(state: DidState, operation: AnchoredOperation) -> None:
    payload = _verified_payload(operation.params, "updateKey", state.update_commitment)
    delta = _decode_delta(operation.params.get("encodedDelta"), payload.get("deltaHash"))
    apply_patches(state, delta.get("patches"))
    state.update_commitment = _key_commitment(delta["updateCommitment"])

def _apply_recover(state: DidState, operation: AnchoredOperation) -> None:
    payload = _verified_payload(operation.params, "recoveryKey", state.recovery_commitment)
    if not isinstance(payload.get("recoveryCommitment"), str):
        raise InvalidOperation("recover carries no new recovery commitment")
    delta = _decode_delta(operation.params.get("encodedDelta"), payload.get("deltaHash"))
    recovered = DidState(
        state.did_unique_suffix,
        _key_commitment(delta["updateCommitment"]),
        _key_commitment(payload["recoveryCommitment"]),
    )
    apply_patches(recovered, delta.get("patches"))
    state.public_keys = recovered.public_keys
    state.services = recovered.services
    state.update_commitment = recovered.update_commitment
    state.recovery_commitment = recovered.recovery_commitment

def _apply_deactivate(state: DidState, operation: AnchoredOperation) -> None:
    payload = _verified_payload(operation.params, "recoveryKey", state.recovery_commitment)
    if payload.get("didSuffix") != state.did_unique_suffix:
        raise InvalidOperation("deactivate signed for another DID")
    state.deactivated = True

_APPLIERS: Dict[TransitionTag, Callable[[DidState, AnchoredOperation], None]] = {
    TransitionTag.UPDATE: _apply_update,
    TransitionTag.RECOVER: _apply_recover,
    TransitionTag.DEACTIVATE: _apply_deactivate,
}


def _targets(operation: AnchoredOperation, did_unique_suffix: str) -> bool:
    try:
        return parse_did(operation.params.get("did", "")).did_unique_suffix == did_unique_suffix
    except TyronDidToolError:
        return False

def fetch_operation_log(ledger: LedgerClient, contract_address: str) -> List[AnchoredOperation]:
    """
    Reads the anchored operations of a contract in ledger order.

    Raises:
        NotFoundError: If there is no contract at the address.
    """
    state = ledger.get_contract_state(contract_address)
    if state is None:
        raise NotFoundError(f"No tyron contract at {contract_address}.")
    operations = []
    for index, raw in enumerate(state.get(OPERATION_LOG_FIELD) or []):
        try:
            operations.append(AnchoredOperation.model_validate(raw))
        except PydanticValidationError as e:
            logger.warning(f"Skipping malformed log entry #{index} of {contract_address}: {e}")
    logger.debug(f"Fetched {len(operations)} anchored operation(s) from {contract_address}")
    return operations

def replay(operations: List[AnchoredOperation], did_unique_suffix: str) -> DidState:
    """
    Folds the operation log into the current state of a DID.

    Raises:
        NotFoundError: If the log holds no valid create operation for the suffix.
    """
    state = None
    for index, operation in enumerate(operations):
        if not _targets(operation, did_unique_suffix):
            continue
        if state is None:
            if operation.tag != TransitionTag.CREATE:
                logger.warning(f"Skipping {operation.tag.value} #{index}: DID not created yet")
                continue
            try:
                state = _apply_create(operation, did_unique_suffix)
            except InvalidOperation as e:
                logger.warning(f"Skipping Create #{index}: {e}")
                continue
            state.created = operation.timestamp
            state.version_id = operation.block
            continue

        if operation.tag == TransitionTag.CREATE:
            logger.warning(f"Skipping Create #{index}: DID already created")
            continue
        try:
            _APPLIERS[operation.tag](state, operation)
        except InvalidOperation as e:
            logger.warning(f"Skipping {operation.tag.value} #{index}: {e}")
            continue
        state.updated = operation.timestamp
        state.version_id = operation.block
        logger.debug(f"Applied {operation.tag.value} #{index}")
        if state.deactivated:
            logger.info(f"DID {did_unique_suffix} deactivated at operation #{index}")
            break

    if state is None:
        raise NotFoundError(f"No anchored create operation for DID suffix {did_unique_suffix}.")
    return state


def render_document(did: str, state: DidState) -> Dict[str, Any]:
    """W3C DID document for a replayed state. A deactivated DID keeps only its id."""
    document = {"@context": [DID_CONTEXT_V1], "id": did}
    if state.deactivated:
        return document

    document["verificationMethod"] = [
        {
            "id": f"{did}#{key['id']}",
            "type": key["type"],
            "controller": did,
            "publicKeyJwk": key["publicKeyJwk"],
        }
        for key in state.public_keys
    ]
    authentication = [f"{did}#{k['id']}" for k in state.public_keys if PublicKeyPurpose.AUTH.value in k["purposes"]]
    assertion = [f"{did}#{k['id']}" for k in state.public_keys if PublicKeyPurpose.GENERAL.value in k["purposes"]]
    if authentication:
        document["authentication"] = authentication
    if assertion:
        document["assertionMethod"] = assertion
    if state.services:
        document["service"] = [
            {"id": f"{did}#{s['id']}", "type": s["type"], "serviceEndpoint": s["serviceEndpoint"]}
            for s in state.services
        ]
    return document

def _document_metadata(canonical_id: str, state: DidState) -> Dict[str, Any]:
    method = {"published": state.published}
    if not state.deactivated:
        method["updateCommitment"] = state.update_commitment.commitment
        method["recoveryCommitment"] = state.recovery_commitment.commitment
    metadata = {"canonicalId": canonical_id, "deactivated": state.deactivated, "method": method}
    if state.created:
        metadata["created"] = state.created
    if state.updated:
        metadata["updated"] = state.updated
    if state.version_id is not None:
        metadata["versionId"] = str(state.version_id)
    return metadata

def _as_document(did: str, canonical_id: str, state: DidState) -> Dict[str, Any]:
    return render_document(did, state)

def _as_resolution_result(did: str, canonical_id: str, state: DidState) -> Dict[str, Any]:
    result = ResolutionResult(
        document=render_document(did, state),
        document_metadata=_document_metadata(canonical_id, state),
        resolution_metadata={"contentType": DID_CONTENT_TYPE},
    )
    return result.model_dump(by_alias=True)

_PACKAGERS: Dict[Accept, Callable[[str, str, DidState], Dict[str, Any]]] = {
    Accept.DOCUMENT: _as_document,
    Accept.RESOLUTION_RESULT: _as_resolution_result,
}


def resolve(
    network: NetworkNamespace,
    contract_address: str,
    resolution_input: ResolutionInput,
    ledger: LedgerClient
) -> Dict[str, Any]:
    """
    Resolves a DID against the operation log of its tyron contract.

    Args:
        network: Network the DID and the contract live on.
        contract_address: Address of the DID's tyron contract.
        resolution_input: The DID and whether to return a document or a full resolution result.
        ledger: Ledger to read contract state from.

    Returns:
        The DID document, or the {document, documentMetadata, resolutionMetadata} envelope.

    Raises:
        DidError: If the DID is malformed or belongs to another network.
        NotFoundError: If the DID has no valid create operation in the contract.
    """
    parsed = parse_did(resolution_input.did)
    if parsed.network != NetworkNamespace(network):
        raise DidError(f"DID {resolution_input.did} is not a {NetworkNamespace(network).value} DID.")
    did = short_form(resolution_input.did)

    logger.info(f"Resolving {did} from contract {contract_address}")
    operations = fetch_operation_log(ledger, contract_address)
    state = replay(operations, parsed.did_unique_suffix)
    return _PACKAGERS[resolution_input.accept](did, did, state)

def resolve_long_form(resolution_input: ResolutionInput) -> Dict[str, Any]:
    """
    Resolves a long-form DID from its embedded initial state, without the ledger.

    Raises:
        DidError: If the DID is not long-form or its embedded state does not match its suffix.
    """
    parsed = parse_did(resolution_input.did)
    if not parsed.is_long_form:
        raise DidError(f"{resolution_input.did} is not a long-form DID.")
    canonical_id = short_form(resolution_input.did)
    create = AnchoredOperation(
        tag=TransitionTag.CREATE,
        params={
            "did": canonical_id,
            "encodedSuffixData": parsed.encoded_suffix_data,
            "encodedDelta": parsed.encoded_delta,
        },
    )
    try:
        suffix_data = decode_json(parsed.encoded_suffix_data)
        delta = decode_json(parsed.encoded_delta)
        create.params["recoveryCommitment"] = suffix_data["recoveryCommitment"]
        create.params["updateCommitment"] = delta["updateCommitment"]
        state = _apply_create(create, parsed.did_unique_suffix)
    except (ValueError, UnicodeDecodeError, KeyError, TypeError) as e:
        raise DidError(f"Long-form DID state is malformed: {e}") from e
    except InvalidOperation as e:
        raise DidError(f"Long-form DID state does not match its suffix: {e}") from e
    state.published = False
    logger.info(f"Resolved long-form DID {canonical_id} offline")
    return _PACKAGERS[resolution_input.accept](resolution_input.did, canonical_id, state)
