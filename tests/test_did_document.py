"""Tests for DID resolution"""

import json

import pytest

from conftest import CLIENT_KEY, OWNER_KEY, FACTORY_ADDRESS, FIXED_TIME
from tyron_did_tool.commitment import KeyCommitment, commit
from tyron_did_tool.contract_loader import create_contract_loader
from tyron_did_tool.crypto_utils import generate_key_pair, public_jwk_from_private
from tyron_did_tool.did_document import (
    DidState,
    InvalidOperation,
    apply_patches,
    fetch_operation_log,
    replay,
    resolve,
    resolve_long_form,
)
from tyron_did_tool.did_scheme import long_form_did, new_did
from tyron_did_tool.errors import DidError, NotFoundError
from tyron_did_tool.operations import build_create, build_deactivate, build_recover, build_update
from tyron_did_tool.schemas import (
    Accept,
    CreateOperationInput,
    LongFormDidInput,
    NetworkNamespace,
    PublicKeyInput,
    ResolutionInput,
    SchemeInput,
    ServiceEndpointInput,
)
from tyron_did_tool.transaction import TyronTransaction


class AnchoredDid:
    """A DID created on the in-memory ledger, with helpers to anchor more operations."""

    def __init__(self, ledger, contract_init, operation_input, key_generator):
        self.ledger = ledger
        self.network = operation_input.network
        self.created = build_create(operation_input, key_generator=key_generator)
        self.did = new_did(SchemeInput(network=self.network, did_unique_suffix=self.created.did_unique_suffix))
        self.handle = TyronTransaction.initialize(
            self.network, contract_init, CLIENT_KEY, OWNER_KEY, 10000, ledger, sleep=lambda s: None
        )
        self.address = TyronTransaction.deploy(
            self.handle, "0.1", create_contract_loader(ledger, FACTORY_ADDRESS)
        ).address
        self.submit(TyronTransaction.create(
            self.did,
            self.created.encoded_suffix_data,
            self.created.encoded_delta,
            self.created.update_commitment,
            self.created.recovery_commitment,
        ))

    def submit(self, call):
        return TyronTransaction.submit(self.handle, self.address, call)

    def update(self, operation):
        return self.submit(TyronTransaction.update(self.did, operation))

    def recover(self, operation):
        return self.submit(TyronTransaction.recover(self.did, operation))

    def deactivate(self, operation):
        return self.submit(TyronTransaction.deactivate(self.did, operation))

    def resolve(self, accept=Accept.DOCUMENT):
        return resolve(self.network, self.address, ResolutionInput(did=self.did, accept=accept), self.ledger)


@pytest.fixture
def anchored(factory_ledger, contract_init, create_input, key_generator):
    return AnchoredDid(factory_ledger, contract_init, create_input, key_generator)


def test_scenario_a_default_network_single_key(factory_ledger, contract_init, primary_key_input, key_generator):
    anchored = AnchoredDid(
        factory_ledger, contract_init, CreateOperationInput(public_key_input=[primary_key_input]), key_generator
    )
    assert anchored.did == f"did:tyron:zil:{anchored.created.did_unique_suffix}"

    document = anchored.resolve()
    assert document["id"] == anchored.did
    assert len(document["verificationMethod"]) == 1
    assert "service" not in document

def test_scenario_b_document_matches_create_delta(anchored, key_generator):
    signing_public = key_generator.pairs[0][0]
    did = anchored.did

    assert anchored.resolve() == {
        "@context": ["https://www.w3.org/ns/did/v1"],
        "id": did,
        "verificationMethod": [{
            "id": f"{did}#primarySigningKey",
            "type": "EcdsaSecp256k1VerificationKey2019",
            "controller": did,
            "publicKeyJwk": signing_public,
        }],
        "authentication": [f"{did}#primarySigningKey"],
        "assertionMethod": [f"{did}#primarySigningKey"],
        "service": [{
            "id": f"{did}#website",
            "type": "LinkedDomains",
            "serviceEndpoint": "https://tyron.example.com",
        }],
    }

def test_resolution_result_envelope(anchored):
    result = anchored.resolve(Accept.RESOLUTION_RESULT)

    assert set(result) == {"document", "documentMetadata", "resolutionMetadata"}
    assert result["resolutionMetadata"] == {"contentType": "application/did+ld+json"}
    metadata = result["documentMetadata"]
    assert metadata["deactivated"] is False
    assert metadata["canonicalId"] == anchored.did
    assert metadata["created"] == FIXED_TIME
    assert "updated" not in metadata
    assert metadata["versionId"] == str(anchored.handle.receipts[-1].block)
    assert metadata["method"] == {
        "published": True,
        "updateCommitment": anchored.created.update_commitment,
        "recoveryCommitment": anchored.created.recovery_commitment,
    }

def test_resolution_is_idempotent(anchored):
    first = anchored.resolve(Accept.RESOLUTION_RESULT)
    second = anchored.resolve(Accept.RESOLUTION_RESULT)
    assert json.dumps(first, sort_keys=True) == json.dumps(second, sort_keys=True)

def test_valid_update_is_applied(anchored, key_generator):
    operation = build_update(
        anchored.created.did_unique_suffix,
        anchored.created.update_private_key,
        add_keys=[PublicKeyInput(id="authKey", purposes=["auth"])],
        remove_service_ids=["website"],
        key_generator=key_generator,
    )
    anchored.update(operation)

    result = anchored.resolve(Accept.RESOLUTION_RESULT)
    document = result["document"]
    assert [vm["id"] for vm in document["verificationMethod"]] == [
        f"{anchored.did}#primarySigningKey", f"{anchored.did}#authKey"
    ]
    assert document["authentication"] == [f"{anchored.did}#primarySigningKey", f"{anchored.did}#authKey"]
    assert document["assertionMethod"] == [f"{anchored.did}#primarySigningKey"]
    assert "service" not in document
    next_update_public = key_generator.pairs[-1][0]
    assert result["documentMetadata"]["method"]["updateCommitment"] == commit(next_update_public)
    assert result["documentMetadata"]["updated"] == FIXED_TIME

def test_chained_updates_use_the_next_key(anchored):
    first = build_update(
        anchored.created.did_unique_suffix, anchored.created.update_private_key,
        add_services=[ServiceEndpointInput(id="blog", type="Blog", endpoint="https://blog.example.com")],
    )
    anchored.update(first)
    second = build_update(
        anchored.created.did_unique_suffix, first.next_update_private_key, remove_service_ids=["website"]
    )
    anchored.update(second)
    replayed = build_update(
        anchored.created.did_unique_suffix, anchored.created.update_private_key, remove_service_ids=["blog"]
    )
    anchored.update(replayed)

    assert [s["id"] for s in anchored.resolve()["service"]] == [f"{anchored.did}#blog"]

def test_replay_authorizes_through_key_commitments(anchored):
    operations = fetch_operation_log(anchored.ledger, anchored.address)
    state = replay(operations, anchored.created.did_unique_suffix)

    assert state.update_commitment == KeyCommitment(anchored.created.update_commitment)
    assert state.recovery_commitment == KeyCommitment(anchored.created.recovery_commitment)
    assert state.update_commitment.authorizes(public_jwk_from_private(anchored.created.update_private_key))
    assert not state.update_commitment.authorizes(public_jwk_from_private(anchored.created.recovery_private_key))

def test_scenario_e_wrong_reveal_is_skipped(anchored):
    before = anchored.resolve()
    _, stranger_private = generate_key_pair()
    forged = build_update(
        anchored.created.did_unique_suffix, stranger_private, remove_key_ids=["primarySigningKey"]
    )
    anchored.update(forged)

    assert anchored.resolve() == before

    valid = build_update(
        anchored.created.did_unique_suffix, anchored.created.update_private_key, remove_service_ids=["website"]
    )
    anchored.update(valid)
    assert "service" not in anchored.resolve()

def test_tampered_delta_is_skipped(anchored):
    before = anchored.resolve()
    genuine = build_update(
        anchored.created.did_unique_suffix, anchored.created.update_private_key, remove_service_ids=["website"]
    )
    other = build_update(
        anchored.created.did_unique_suffix, anchored.created.update_private_key,
        remove_key_ids=["primarySigningKey"]
    )
    tampered = genuine.model_copy(update={"encoded_delta": other.encoded_delta})
    anchored.update(tampered)

    assert anchored.resolve() == before

def test_recover_replaces_document(anchored, key_generator):
    operation = build_recover(
        anchored.created.did_unique_suffix,
        anchored.created.recovery_private_key,
        [PublicKeyInput(id="newKey", purposes=["general", "auth"])],
        key_generator=key_generator,
    )
    anchored.recover(operation)

    stale_update = build_update(
        anchored.created.did_unique_suffix, anchored.created.update_private_key, remove_key_ids=["newKey"]
    )
    anchored.update(stale_update)

    result = anchored.resolve(Accept.RESOLUTION_RESULT)
    document = result["document"]
    assert [vm["id"] for vm in document["verificationMethod"]] == [f"{anchored.did}#newKey"]
    assert document["verificationMethod"][0]["publicKeyJwk"] == key_generator.pairs[-3][0]
    assert "service" not in document
    assert result["documentMetadata"]["method"]["recoveryCommitment"] == commit(key_generator.pairs[-1][0])

def test_scenario_c_deactivate_is_terminal(anchored):
    anchored.deactivate(build_deactivate(anchored.created.did_unique_suffix, anchored.created.recovery_private_key))
    deactivated_at = anchored.handle.receipts[-1].block
    anchored.update(build_update(
        anchored.created.did_unique_suffix, anchored.created.update_private_key, remove_service_ids=["website"]
    ))

    result = anchored.resolve(Accept.RESOLUTION_RESULT)
    assert result["documentMetadata"]["deactivated"] is True
    assert result["documentMetadata"]["versionId"] == str(deactivated_at)
    assert result["documentMetadata"]["method"] == {"published": True}
    assert result["document"] == {"@context": ["https://www.w3.org/ns/did/v1"], "id": anchored.did}
    assert anchored.resolve() == result["document"]

def test_deactivate_with_update_key_is_skipped(anchored):
    anchored.deactivate(build_deactivate(anchored.created.did_unique_suffix, anchored.created.update_private_key))
    result = anchored.resolve(Accept.RESOLUTION_RESULT)
    assert result["documentMetadata"]["deactivated"] is False
    assert "verificationMethod" in result["document"]


def test_scenario_d_no_operations(factory_ledger, contract_init, create_input):
    handle = TyronTransaction.initialize(
        NetworkNamespace.TESTNET, contract_init, CLIENT_KEY, OWNER_KEY, 10000, factory_ledger
    )
    address = TyronTransaction.deploy(handle, "0.1", create_contract_loader(factory_ledger, FACTORY_ADDRESS)).address
    did = new_did(SchemeInput(network=NetworkNamespace.TESTNET, did_unique_suffix=build_create(create_input).did_unique_suffix))

    with pytest.raises(NotFoundError):
        resolve(NetworkNamespace.TESTNET, address, ResolutionInput(did=did), factory_ledger)

def test_no_contract_at_address(ledger, create_input):
    did = new_did(SchemeInput(network=NetworkNamespace.TESTNET, did_unique_suffix=build_create(create_input).did_unique_suffix))
    with pytest.raises(NotFoundError):
        resolve(NetworkNamespace.TESTNET, "0x" + "42" * 20, ResolutionInput(did=did), ledger)

def test_other_did_in_contract_is_not_found(anchored, create_input):
    other = build_create(create_input)
    did = new_did(SchemeInput(network=NetworkNamespace.TESTNET, did_unique_suffix=other.did_unique_suffix))
    with pytest.raises(NotFoundError):
        resolve(NetworkNamespace.TESTNET, anchored.address, ResolutionInput(did=did), anchored.ledger)

def test_create_with_mismatched_commitment_is_not_found(ledger, create_input):
    created = build_create(create_input)
    did = new_did(SchemeInput(network=NetworkNamespace.TESTNET, did_unique_suffix=created.did_unique_suffix))
    address = ledger.register_contract("0x" + "77" * 20, "code", state={"operation_log": [{
        "tag": "Create",
        "params": {
            "did": did,
            "encodedSuffixData": created.encoded_suffix_data,
            "encodedDelta": created.encoded_delta,
            "updateCommitment": created.recovery_commitment,
            "recoveryCommitment": created.recovery_commitment,
        },
        "block": 1,
    }]})
    with pytest.raises(NotFoundError):
        resolve(NetworkNamespace.TESTNET, address, ResolutionInput(did=did), ledger)

def test_network_mismatch(anchored):
    with pytest.raises(DidError):
        resolve(NetworkNamespace.MAINNET, anchored.address, ResolutionInput(did=anchored.did), anchored.ledger)

def test_malformed_log_entries_are_skipped(anchored):
    contract = anchored.ledger.contracts[anchored.address]
    contract["state"]["operation_log"].insert(0, {"tag": "Transfer", "params": {}})
    assert len(fetch_operation_log(anchored.ledger, anchored.address)) == 1
    assert anchored.resolve()["id"] == anchored.did


def long_form_for(created, network=NetworkNamespace.TESTNET):
    return long_form_did(LongFormDidInput(
        scheme_input=SchemeInput(network=network, did_unique_suffix=created.did_unique_suffix),
        encoded_suffix_data=created.encoded_suffix_data,
        encoded_delta=created.encoded_delta,
    ))

def test_resolve_long_form(anchored):
    did = long_form_for(anchored.created)
    result = resolve_long_form(ResolutionInput(did=did, accept=Accept.RESOLUTION_RESULT))

    assert result["document"]["id"] == did
    assert result["documentMetadata"]["canonicalId"] == anchored.did
    assert result["documentMetadata"]["method"]["published"] is False
    assert "created" not in result["documentMetadata"]
    assert len(result["document"]["verificationMethod"]) == 1
    published = anchored.resolve()
    assert result["document"]["service"][0]["type"] == published["service"][0]["type"]

def test_resolve_long_form_rejects_foreign_state(create_input):
    first, second = build_create(create_input), build_create(create_input)
    forged = long_form_did(LongFormDidInput(
        scheme_input=SchemeInput(network=NetworkNamespace.TESTNET, did_unique_suffix=first.did_unique_suffix),
        encoded_suffix_data=second.encoded_suffix_data,
        encoded_delta=second.encoded_delta,
    ))
    with pytest.raises(DidError):
        resolve_long_form(ResolutionInput(did=forged))

def test_resolve_long_form_needs_long_form(anchored):
    with pytest.raises(DidError):
        resolve_long_form(ResolutionInput(did=anchored.did))


def test_public_key_without_type_is_rejected():
    public_jwk, _ = generate_key_pair()
    state = DidState("suffix", KeyCommitment("update"), KeyCommitment("recovery"))
    entry = {"id": "signingKey", "purposes": ["general"], "publicKeyJwk": public_jwk}

    with pytest.raises(InvalidOperation):
        apply_patches(state, [{"action": "add-public-keys", "publicKeys": [entry]}])
    with pytest.raises(InvalidOperation):
        apply_patches(state, [{"action": "add-public-keys", "publicKeys": [dict(entry, type="JsonWebKey2020")]}])
    assert state.public_keys == []

    apply_patches(state, [{"action": "add-public-keys",
                           "publicKeys": [dict(entry, type="EcdsaSecp256k1VerificationKey2019")]}])
    assert state.public_keys[0]["type"] == "EcdsaSecp256k1VerificationKey2019"
