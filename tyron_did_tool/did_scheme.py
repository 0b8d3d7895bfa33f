# tyron_did_tool/did_scheme.py
"""Formatting and parsing of tyron DIDs, short and long-form."""

import logging

from .constants import (
    DID_TYRON_PREFIX,
    ENCODED_SUFFIX_LENGTH,
    LONG_FORM_SEPARATOR,
    MAINNET_SEGMENT,
)
from .crypto_utils import b64url_decode, is_sha256_multihash
from .errors import DidError, InvalidSuffixError
from .schemas import DEFAULT_NETWORK, LongFormDidInput, NetworkNamespace, ParsedDid, SchemeInput

logger = logging.getLogger(__name__)

_NETWORK_SEGMENTS = {
    NetworkNamespace.MAINNET: MAINNET_SEGMENT,
    NetworkNamespace.TESTNET: None,
}
_SEGMENT_NETWORKS = {segment: network for network, segment in _NETWORK_SEGMENTS.items() if segment}


def validate_suffix(did_unique_suffix: str) -> str:
    """
    Checks that a suffix is an encoded sha2-256 multihash.

    Raises:
        InvalidSuffixError: If the length or encoding is wrong.
    """
    if not isinstance(did_unique_suffix, str) or len(did_unique_suffix) != ENCODED_SUFFIX_LENGTH:
        raise InvalidSuffixError(
            f"DID suffix must be {ENCODED_SUFFIX_LENGTH} base64url characters, got '{did_unique_suffix}'."
        )
    try:
        decoded = b64url_decode(did_unique_suffix)
    except ValueError as e:
        raise InvalidSuffixError(f"DID suffix '{did_unique_suffix}' is not base64url: {e}") from e
    if not is_sha256_multihash(decoded):
        raise InvalidSuffixError(f"DID suffix '{did_unique_suffix}' is not a sha2-256 multihash.")
    return did_unique_suffix

def network_segment(network: NetworkNamespace) -> str:
    segment = _NETWORK_SEGMENTS[NetworkNamespace(network)]
    return f"{segment}:" if segment else ""

def new_did(scheme_input: SchemeInput) -> str:
    """
    Formats the DID for a suffix.

    Example: did:tyron:zil:EiD... on testnet, did:tyron:zil:main:EiD... on mainnet.
    """
    suffix = validate_suffix(scheme_input.did_unique_suffix)
    did = f"{DID_TYRON_PREFIX}{network_segment(scheme_input.network)}{suffix}"
    logger.debug(f"Formatted DID {did}")
    return did

def long_form_did(long_form_input: LongFormDidInput) -> str:
    """Appends the encoded suffix data and delta to the short DID, so it resolves without the ledger."""
    short_did = new_did(long_form_input.scheme_input)
    for name, value in (("suffix data", long_form_input.encoded_suffix_data),
                        ("delta", long_form_input.encoded_delta)):
        try:
            b64url_decode(value)
        except ValueError as e:
            raise DidError(f"Encoded {name} is not base64url: {e}") from e
        if not value:
            raise DidError(f"Encoded {name} is empty.")
    return f"{short_did}:{long_form_input.encoded_suffix_data}{LONG_FORM_SEPARATOR}{long_form_input.encoded_delta}"

def short_form(did: str) -> str:
    parsed = parse_did(did)
    return new_did(SchemeInput(network=parsed.network, did_unique_suffix=parsed.did_unique_suffix))

def parse_did(did: str) -> ParsedDid:
    """
    Splits a tyron DID, short or long-form, into its parts.

    Raises:
        DidError: If the string is not a tyron DID.
        InvalidSuffixError: If the suffix is malformed.
    """
    if not isinstance(did, str) or not did.startswith(DID_TYRON_PREFIX):
        raise DidError(f"Unsupported DID '{did}': must start with '{DID_TYRON_PREFIX}'.")

    segments = did[len(DID_TYRON_PREFIX):].split(":")
    network = DEFAULT_NETWORK
    if segments and segments[0] in _SEGMENT_NETWORKS:
        network = _SEGMENT_NETWORKS[segments.pop(0)]

    if len(segments) == 1:
        return ParsedDid(network=network, did_unique_suffix=validate_suffix(segments[0]))

    if len(segments) == 2:
        suffix = validate_suffix(segments[0])
        state = segments[1].split(LONG_FORM_SEPARATOR)
        if len(state) != 2 or not all(state):
            raise DidError(f"Malformed long-form DID state in '{did}'.")
        for part in state:
            try:
                b64url_decode(part)
            except ValueError as e:
                raise DidError(f"Long-form DID state is not base64url: {e}") from e
        return ParsedDid(
            network=network,
            did_unique_suffix=suffix,
            encoded_suffix_data=state[0],
            encoded_delta=state[1],
        )

    raise DidError(f"Malformed tyron DID '{did}'.")
