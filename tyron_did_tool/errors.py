# tyron_did_tool/errors.py
"""Custom exception classes for tyron-did-tool."""

from typing import Optional


class TyronDidToolError(Exception):
    """Base class for tool-specific errors."""
    def __init__(self, message: str, error_code: str = "ToolError"):
        self.message = message
        self.error_code = error_code
        super().__init__(f"[{error_code}] {message}")

class ConfigurationError(TyronDidToolError):
    """Error related to configuration or environment setup."""
    def __init__(self, message: str):
        super().__init__(message, error_code="ConfigurationError")

class ValidationError(TyronDidToolError):
    """Malformed input. Always raised locally, before anything reaches the ledger."""
    def __init__(self, message: str, error_code: str = "ValidationError"):
        super().__init__(message, error_code=error_code)

class MissingPrimaryKeyError(ValidationError):
    def __init__(self, message: str = "A primary key with purposes general and auth is required"):
        super().__init__(message, error_code="MissingPrimaryKey")

class DuplicateKeyIdError(ValidationError):
    def __init__(self, message: str):
        super().__init__(message, error_code="DuplicateKeyId")

class InvalidServiceEndpointError(ValidationError):
    def __init__(self, message: str):
        super().__init__(message, error_code="InvalidServiceEndpoint")

class InvalidAddressError(ValidationError):
    def __init__(self, message: str):
        super().__init__(message, error_code="InvalidAddress")

class InvalidSuffixError(ValidationError):
    def __init__(self, message: str):
        super().__init__(message, error_code="InvalidSuffix")

class DidError(TyronDidToolError):
    """Error related to DID operations."""
    def __init__(self, message: str):
        super().__init__(message, error_code="DidError")

class CommitmentError(TyronDidToolError):
    """Digest or key format mismatch while committing to a key."""
    def __init__(self, message: str, error_code: str = "CommitmentError"):
        super().__init__(message, error_code=error_code)

class InvalidPublicKeyError(CommitmentError):
    def __init__(self, message: str):
        super().__init__(message, error_code="InvalidPublicKey")

class KeyFileError(TyronDidToolError):
    """Error when exporting or loading a private key file."""
    def __init__(self, message: str):
        super().__init__(message, error_code="KeyFileError")

class PipelineStateError(TyronDidToolError):
    """A pipeline stage was called out of order, concurrently, or after close()."""
    def __init__(self, message: str):
        super().__init__(message, error_code="PipelineStateError")

class ChainError(TyronDidToolError):
    """
    Error raised by a ledger interaction.

    `stage` names the pipeline stage that failed and `transaction_id` is set
    whenever a transaction reached the network, so the caller can tell whether
    state may have partially landed.
    """
    retriable = False

    def __init__(
        self,
        message: str,
        stage: str = "ledger",
        transaction_id: Optional[str] = None,
        error_code: str = "ChainError"
    ):
        self.stage = stage
        self.transaction_id = transaction_id
        super().__init__(f"{stage}: {message}", error_code=error_code)
        self.message = message

class LedgerRpcError(ChainError):
    """The JSON-RPC endpoint answered with an error object."""
    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        stage: str = "ledger",
        transaction_id: Optional[str] = None
    ):
        self.code = code
        super().__init__(message, stage=stage, transaction_id=transaction_id, error_code="LedgerRpcError")

class DeploymentFailedError(ChainError):
    def __init__(self, message: str, transaction_id: Optional[str] = None):
        super().__init__(message, stage="deploy", transaction_id=transaction_id, error_code="DeploymentFailed")

class SubmissionFailedError(ChainError):
    """Rejected by the contract logic. Re-sending the same call will not help."""
    def __init__(self, message: str, transaction_id: Optional[str] = None):
        super().__init__(message, stage="submit", transaction_id=transaction_id, error_code="SubmissionFailed")

class NetworkTimeoutError(ChainError):
    """
    The ledger did not answer or confirm in time. The transaction may still land:
    re-query chain state before retrying.
    """
    retriable = True

    def __init__(self, message: str, stage: str = "ledger", transaction_id: Optional[str] = None):
        super().__init__(message, stage=stage, transaction_id=transaction_id, error_code="NetworkTimeout")

class ResolutionError(TyronDidToolError):
    """Error related to DID resolution."""
    def __init__(self, message: str, error_code: str = "ResolutionError"):
        super().__init__(message, error_code=error_code)

class NotFoundError(ResolutionError):
    def __init__(self, message: str):
        super().__init__(message, error_code="NotFound")
