"""Configuration — program parameters and chain settings.

Program parameters live in config/program_params.json under "program".
Chain settings (RPC endpoint, signing key, controller address) come from
the environment, optionally via a .env file at the project root.

The duration gate threshold and the loyalty schedule are fixed policy
constants in referrals.compensation.strategies, not configuration.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from referrals.compensation.strategies import validate_bips
from referrals.compensation.treasury import DEFAULT_PAYOUT_GAS_STIPEND, PayoutMode


PARAMS_FILE = "program_params.json"
STRATEGY_KINDS = frozenset({"none", "percent", "loyalty"})
SEPOLIA_CHAIN_ID = 11155111


@dataclass(frozen=True)
class ProgramConfig:
    """Economics of one program, fixed at construction."""

    strategy: str = "percent"
    commission_bips: int = 0
    duration_gated: bool = False
    allowlist: bool = False
    allowlist_root: Optional[str] = None
    payout_mode: PayoutMode = PayoutMode.PUSH
    payout_gas_stipend: Optional[int] = DEFAULT_PAYOUT_GAS_STIPEND

    def __post_init__(self) -> None:
        if self.strategy not in STRATEGY_KINDS:
            raise ValueError(
                f"Unknown strategy {self.strategy!r}; expected one of "
                f"{', '.join(sorted(STRATEGY_KINDS))}"
            )
        validate_bips(self.commission_bips)
        if self.payout_gas_stipend is not None and self.payout_gas_stipend < 0:
            raise ValueError("Payout gas stipend must be non-negative")
        object.__setattr__(self, "payout_mode", PayoutMode(self.payout_mode))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ProgramConfig:
        known = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        unknown = set(data) - set(known)
        if unknown:
            raise ValueError(f"Unknown program parameters: {', '.join(sorted(unknown))}")
        return cls(**known)

    @classmethod
    def from_json(cls, path: Path) -> ProgramConfig:
        params = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls.from_mapping(params["program"])

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> ProgramConfig:
        return cls.from_json(Path(config_dir) / PARAMS_FILE)


@dataclass(frozen=True)
class ChainSettings:
    """Connection and signing settings for the on-chain registrar."""

    rpc_url: str
    private_key: str
    controller_address: str
    chain_id: int = SEPOLIA_CHAIN_ID

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> ChainSettings:
        """Read REFERRALS_* variables, loading env_file first if given.

        Raises ValueError naming every missing variable.
        """
        if env_file is not None:
            load_dotenv(env_file)
        else:
            load_dotenv()

        rpc_url = os.getenv("REFERRALS_RPC_URL")
        private_key = os.getenv("REFERRALS_PRIVATE_KEY")
        controller = os.getenv("REFERRALS_CONTROLLER_ADDRESS")
        missing = [
            name
            for name, value in (
                ("REFERRALS_RPC_URL", rpc_url),
                ("REFERRALS_PRIVATE_KEY", private_key),
                ("REFERRALS_CONTROLLER_ADDRESS", controller),
            )
            if not value
        ]
        if missing:
            raise ValueError(f"Missing chain settings: {', '.join(missing)}")
        return cls(
            rpc_url=rpc_url,
            private_key=private_key,
            controller_address=controller,
            chain_id=int(os.getenv("REFERRALS_CHAIN_ID", str(SEPOLIA_CHAIN_ID))),
        )
