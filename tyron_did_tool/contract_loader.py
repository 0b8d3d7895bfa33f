# contract_loader.py

"""
Provides the source code of a tyron contract version for deployment.

Local contract files are preferred, so deployments work from a pinned copy of
the code. Otherwise the code is read from the ledger: the factory contract
(`tyron_init`) maps each published version to a template contract whose code
is fetched with GetSmartContractCode.
"""

import logging
import re
from pathlib import Path
from typing import Callable, Dict, Optional

from .constants import CONTRACT_FILE_TEMPLATE, FACTORY_VERSIONS_FIELD
from .errors import DeploymentFailedError, ValidationError
from .ledger import LedgerClient

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"^[A-Za-z0-9._-]{1,32}$")

ContractLoader = Callable[[str], str]


def create_contract_loader(
    ledger: LedgerClient,
    factory_address: str,
    contracts_dir: Optional[str] = None
) -> ContractLoader:
    """
    Creates a loader that first checks `contracts_dir` and falls back to the
    factory contract on the ledger.

    Returns:
        A function mapping a contract version to its source code.
    """
    cache: Dict[str, str] = {}

    def contract_loader(version: str) -> str:
        """
        Returns the code of `version`.

        Raises:
            ValidationError: If the version string is malformed.
            DeploymentFailedError: If no code exists for the version.
        """
        if not isinstance(version, str) or not _VERSION_RE.match(version):
            raise ValidationError(f"Invalid contract version '{version}'.")
        if version in cache:
            return cache[version]

        if contracts_dir:
            path = Path(contracts_dir) / CONTRACT_FILE_TEMPLATE.format(version=version)
            if path.is_file():
                logger.info(f"Using local contract code for version {version}: {path}")
                cache[version] = path.read_text(encoding="utf-8")
                return cache[version]
            logger.debug(f"No local contract file at {path}")

        logger.info(f"Fetching contract version {version} from factory {factory_address}")
        state = ledger.get_contract_state(factory_address)
        if state is None:
            raise DeploymentFailedError(f"Factory contract {factory_address} not found on the ledger.")

        template_address = (state.get(FACTORY_VERSIONS_FIELD) or {}).get(version)
        if not template_address:
            raise DeploymentFailedError(f"Contract version '{version}' is not published by the factory.")

        code = ledger.get_contract_code(template_address)
        if not code:
            raise DeploymentFailedError(
                f"Template contract {template_address} for version '{version}' has no code."
            )
        cache[version] = code
        return code

    return contract_loader
