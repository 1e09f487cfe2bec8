"""
YAML configuration for vesting accounts.

Example:

    name: seed-round
    initializer: 5b1f...c0de          # admin identity (public key hex)
    total_deposited: 5000000          # base units
    decimals: 6
    beneficiaries:
      - identity: 9a3e...77aa
        allocated_tokens: 1000000
        initial_unlock_percent: 10
        lockup_delay: 2592000         # 30 days
        round_count: 12
        round_span: 31104000          # 12 x 30 days
"""

from pathlib import Path

import yaml

from vestledger.core.exceptions import ConfigurationError
from vestledger.core.models import VestingAccount


def load_account_config(config_file: Path) -> VestingAccount:
    """Load and validate a vesting account from a YAML file."""
    config_file = Path(config_file)
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Config file not found: {config_file}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {config_file}: {exc}") from exc

    if data is None:
        raise ConfigurationError(f"Config file is empty: {config_file}")
    return VestingAccount.from_dict(data)
