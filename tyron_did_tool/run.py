#!/usr/bin/env python3
"""Main entry point for the tyron DID tool."""

import argparse
import json
import logging
import os
import sys
from typing import Dict, Any, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from .config import build_ledger, load_config, require_secret
from .constants import DEFAULT_PRIMARY_KEY_ID, EXIT_FAILURE, EXIT_SUCCESS
from .contract_loader import create_contract_loader
from .did_document import resolve, resolve_long_form
from .did_scheme import long_form_did, new_did, parse_did
from .errors import KeyFileError, TyronDidToolError, ValidationError
from .ledger import LedgerClient
from .operations import KeyGenerator, build_create, export_private_keys
from .crypto_utils import address_from_private_key, generate_key_pair
from .schemas import (
    Accept,
    ContractInit,
    CreateOperationInput,
    ErrorOutput,
    InputSchema,
    LongFormDidInput,
    NetworkNamespace,
    PublicKeyInput,
    ResolutionInput,
    SchemeInput,
    ServiceEndpointInput,
)
from .transaction import TyronTransaction

logger = logging.getLogger(__name__)

DEFAULT_CONTRACT_VERSION = "0.1"
KEY_FILE_TEMPLATE = "DID_PRIVATE_KEYS_{name}.json"

_ACCEPT_ALIASES = {
    "document": Accept.DOCUMENT,
    "result": Accept.RESOLUTION_RESULT,
    Accept.DOCUMENT.value: Accept.DOCUMENT,
    Accept.RESOLUTION_RESULT.value: Accept.RESOLUTION_RESULT,
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="tyron DID tool for the Zilliqa ledger")
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')
    networks = [n.value for n in NetworkNamespace]

    subparsers = parser.add_subparsers(dest='command', required=True, help='Command to execute')

    create_parser = subparsers.add_parser('create', help='Create a new tyron DID')
    create_parser.add_argument('--network', choices=networks, help='Ledger network (default: TYRON_NETWORK or testnet)')
    create_parser.add_argument('--key', action='append', dest='keys', metavar='ID:PURPOSE[,PURPOSE]',
                               help=f'Public key to generate, repeatable (default: {DEFAULT_PRIMARY_KEY_ID}:general,auth)')
    create_parser.add_argument('--service', action='append', dest='services', metavar='ID:TYPE:URL',
                               help='Service endpoint, repeatable')
    create_parser.add_argument('--keys-output', help='Private key file (default: DID_PRIVATE_KEYS_<did>.json)')
    create_parser.add_argument('--anchor', action='store_true',
                               help='Deploy a tyron contract and submit the create operation')
    create_parser.add_argument('--contract-version', default=DEFAULT_CONTRACT_VERSION,
                               help='tyron contract version to deploy')
    create_parser.add_argument('--gas-limit', type=int, help='Gas limit per transaction')

    resolve_parser = subparsers.add_parser('resolve', help='Resolve a tyron DID')
    resolve_parser.add_argument('did', help='DID to resolve, short or long-form')
    resolve_parser.add_argument('--contract', help='Address of the DID\'s tyron contract')
    resolve_parser.add_argument('--accept', choices=['document', 'result'], default='document',
                                help='Return the DID document or the full resolution result')
    resolve_parser.add_argument('--network', choices=networks, help='Network the DID lives on')
    resolve_parser.add_argument('--output', '-o', help='Output file for the resolution output')

    return parser.parse_args(argv)


def write_json_file(data: Dict[str, Any], file_path: str, overwrite: bool = True) -> None:
    """Write data to a JSON file."""
    if not overwrite and os.path.exists(file_path):
        raise KeyFileError(f"Refusing to overwrite existing file {file_path}")
    try:
        with open(file_path, 'w') as f:
            json.dump(data, f, indent=2)
        logger.info(f"Data written to {file_path}")
    except OSError as e:
        logger.error(f"Failed to write to {file_path}: {e}")
        raise KeyFileError(f"Failed to write to {file_path}: {e}")


def parse_key_arg(value: str) -> PublicKeyInput:
    """'id:purpose,purpose' -> PublicKeyInput"""
    key_id, sep, purposes = value.partition(':')
    if not sep or not purposes:
        raise ValidationError(f"Key '{value}' must look like ID:PURPOSE[,PURPOSE].")
    try:
        return PublicKeyInput(id=key_id, purposes=[p.strip() for p in purposes.split(',')])
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid key '{value}': {e.errors()[0]['msg']}") from e

def parse_service_arg(value: str) -> ServiceEndpointInput:
    """'id:type:url' -> ServiceEndpointInput. The url keeps its own colons."""
    parts = value.split(':', 2)
    if len(parts) != 3 or not all(parts):
        raise ValidationError(f"Service '{value}' must look like ID:TYPE:URL.")
    return ServiceEndpointInput(id=parts[0], type=parts[1], endpoint=parts[2])

def key_file_name(did: str) -> str:
    return KEY_FILE_TEMPLATE.format(name=did.replace(':', '_'))


def anchor_create(
    did: str,
    result,
    config,
    contract_version: str,
    ledger: Optional[LedgerClient] = None
) -> Dict[str, Any]:
    """Deploys the identity's contract and submits the create operation to it."""
    ledger = ledger or build_ledger(config)
    client_key = require_secret(config, "client_private_key")
    owner_key = require_secret(config, "owner_private_key")
    contract_init = ContractInit(
        factory_address=config.factory_address,
        contract_owner_address=address_from_private_key(owner_key),
        client_address=address_from_private_key(client_key),
        initial_stake=config.initial_stake,
    )
    with TyronTransaction.initialize(
        config.network, contract_init, client_key, owner_key, config.gas_limit, ledger,
        confirmation_timeout=config.confirmation_timeout, poll_interval=config.poll_interval
    ) as handle:
        loader = create_contract_loader(ledger, config.factory_address, config.contracts_dir)
        deployed = TyronTransaction.deploy(handle, contract_version, loader)
        call = TyronTransaction.create(
            did, result.encoded_suffix_data, result.encoded_delta,
            result.update_commitment, result.recovery_commitment
        )
        receipt = TyronTransaction.submit(handle, deployed.address, call)
    return {
        "contractAddress": deployed.address,
        "transactionId": receipt.transaction_id,
        "block": receipt.block,
    }

def handle_create(
    network: Optional[str] = None,
    public_keys: Optional[List[PublicKeyInput]] = None,
    services: Optional[List[ServiceEndpointInput]] = None,
    keys_output: Optional[str] = None,
    anchor: bool = False,
    contract_version: str = DEFAULT_CONTRACT_VERSION,
    gas_limit: Optional[int] = None,
    ledger: Optional[LedgerClient] = None,
    key_generator: KeyGenerator = generate_key_pair
) -> Dict[str, Any]:
    """
    Creates a DID, writes its private keys to a file and optionally anchors it.

    Returns:
        The DID, its long form, the key file path and, when anchored, the contract
        address and transaction id.
    """
    config = load_config(network=network, gas_limit=gas_limit)
    operation_input = CreateOperationInput(
        network=config.network,
        public_key_input=public_keys or [
            PublicKeyInput(id=DEFAULT_PRIMARY_KEY_ID, purposes=["general", "auth"])
        ],
        service_endpoint_input=services or [],
    )
    result = build_create(operation_input, key_generator=key_generator)
    scheme_input = SchemeInput(network=config.network, did_unique_suffix=result.did_unique_suffix)
    did = new_did(scheme_input)
    long_form = long_form_did(LongFormDidInput(
        scheme_input=scheme_input,
        encoded_suffix_data=result.encoded_suffix_data,
        encoded_delta=result.encoded_delta,
    ))

    keys_output = keys_output or key_file_name(did)
    write_json_file(export_private_keys(result).model_dump(by_alias=True), keys_output, overwrite=False)
    logger.warning(f"Private keys for {did} saved to {keys_output}. Keep this file secret.")

    output = {
        "did": did,
        "longFormDid": long_form,
        "didUniqueSuffix": result.did_unique_suffix,
        "keysFile": keys_output,
        "updateCommitment": result.update_commitment,
        "recoveryCommitment": result.recovery_commitment,
    }
    if anchor:
        output.update(anchor_create(did, result, config, contract_version, ledger))
    return output


def handle_resolve(
    did: str,
    contract: Optional[str] = None,
    accept: str = "document",
    network: Optional[str] = None,
    output: Optional[str] = None,
    ledger: Optional[LedgerClient] = None
) -> Dict[str, Any]:
    """Resolves a DID from its contract, or offline when it is long-form and no contract is given."""
    if accept not in _ACCEPT_ALIASES:
        raise ValidationError(f"Unsupported accept value '{accept}'.")
    resolution_input = ResolutionInput(did=did, accept=_ACCEPT_ALIASES[accept])
    parsed = parse_did(did)

    if contract is None:
        if not parsed.is_long_form:
            raise ValidationError("A contract address is needed to resolve a short-form DID.")
        resolved = resolve_long_form(resolution_input)
    else:
        config = load_config(network=network or parsed.network.value)
        resolved = resolve(config.network, contract, resolution_input, ledger or build_ledger(config))

    if output:
        write_json_file(resolved, output)
    return resolved


def _find_payload(args, kwargs) -> Optional[Dict[str, Any]]:
    if 'func_name' in kwargs:
        return kwargs
    module_run = kwargs.get('module_run')
    if isinstance(module_run, dict):
        inputs = module_run.get('inputs')
        if isinstance(inputs, dict) and 'func_name' in inputs:
            return inputs
        if 'func_name' in module_run:
            return module_run
    if args and isinstance(args[0], dict) and 'func_name' in args[0]:
        return args[0]
    return None

def run(*args, **kwargs) -> Dict[str, Any]:
    """
    Process a command passed programmatically.

    The payload holds 'func_name' and 'func_input_data', either directly in kwargs,
    under kwargs['module_run'] (optionally nested in 'inputs'), or as the first
    positional argument. A `ledger` keyword argument replaces the configured one.

    Raises:
        ValidationError: If the payload is missing or malformed.
    """
    logger.info("EXECUTING TYRON-DID-TOOL")
    payload = _find_payload(args, kwargs)
    if payload is None:
        raise ValidationError("Could not find required input payload ('func_name', 'func_input_data') in args or kwargs")
    try:
        command = InputSchema(func_name=payload.get('func_name'), func_input_data=payload.get('func_input_data') or {})
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid input payload: {e}") from e

    params = command.func_input_data
    ledger = kwargs.get('ledger')
    logger.info(f"Executing function: {command.func_name}")

    if command.func_name in ('create', 'create-did'):
        try:
            public_keys = [PublicKeyInput(**k) for k in params.get('public_keys') or []]
            services = [ServiceEndpointInput(**s) for s in params.get('services') or []]
        except (PydanticValidationError, TypeError) as e:
            raise ValidationError(f"Invalid create input: {e}") from e
        return handle_create(
            network=params.get('network'),
            public_keys=public_keys,
            services=services,
            keys_output=params.get('keys_output'),
            anchor=bool(params.get('anchor', False)),
            contract_version=params.get('contract_version', DEFAULT_CONTRACT_VERSION),
            gas_limit=params.get('gas_limit'),
            ledger=ledger,
            key_generator=kwargs.get('key_generator') or generate_key_pair,
        )

    did = params.get('did')
    if not did:
        raise ValidationError("Missing 'did' parameter for resolve in func_input_data")
    return handle_resolve(
        did=did,
        contract=params.get('contract'),
        accept=params.get('accept', 'document'),
        network=params.get('network'),
        output=params.get('output'),
        ledger=ledger,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command-line entry point."""
    try:
        args = parse_args(argv)
        setup_logging(args.verbose)

        if args.command == 'create':
            result = handle_create(
                network=args.network,
                public_keys=[parse_key_arg(k) for k in args.keys or []],
                services=[parse_service_arg(s) for s in args.services or []],
                keys_output=args.keys_output,
                anchor=args.anchor,
                contract_version=args.contract_version,
                gas_limit=args.gas_limit,
            )
        elif args.command == 'resolve':
            result = handle_resolve(
                did=args.did,
                contract=args.contract,
                accept=args.accept,
                network=args.network,
                output=args.output,
            )
        else:
            print(f"Unknown command: {args.command}", file=sys.stderr)
            return EXIT_FAILURE

        print(json.dumps(result, indent=2))
        return EXIT_SUCCESS

    except TyronDidToolError as e:
        print(json.dumps({"error": str(e)}, indent=2))
        return EXIT_FAILURE
    except Exception as e:
        print(json.dumps(ErrorOutput(error="UnexpectedError", message=str(e)).model_dump(), indent=2))
        logger.exception("Unexpected error occurred")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
