"""
Configuration Management
"""

import json
import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

from web3 import Web3

from raffle.lottery.models import NUM_WORDS, REQUEST_CONFIRMATIONS, RaffleConfig
from raffle.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = Path(__file__).parent.parent.parent / "config" / "raffle.conf"

# Gas lane shared by the local and Sepolia presets (500 gwei key hash).
DEFAULT_KEY_HASH = "0x474e34a077df58807dbe9c96d3c009b23b3c6d0cce433e59bbf5b34f823bc56c"

NETWORK_PRESETS: Dict[str, Dict[str, Any]] = {
    "local": {
        "entrance_fee_eth": "0.01",
        "interval": 30,
        "vrf_coordinator": None,
        "key_hash": DEFAULT_KEY_HASH,
        "subscription_id": 0,
        "callback_gas_limit": 500000,
        # coordinator side: flat fee per fulfillment and initial funding, in LINK
        "base_fee_link": "0.25",
        "fund_amount_link": "3",
    },
    "sepolia": {
        "entrance_fee_eth": "0.01",
        "interval": 30,
        "vrf_coordinator": "0x8103B0A8A00be2DDC778e6e7eaa21791Cd364625",
        "key_hash": DEFAULT_KEY_HASH,
        "subscription_id": 0,
        "callback_gas_limit": 500000,
        "base_fee_link": "0.25",
        "fund_amount_link": "3",
    },
}

ENV_SECTIONS = {
    "RAFFLE_": "raffle",
    "VRF_": "vrf",
    "KEEPER_": "keeper",
    "SERVER_": "server",
    "APP_": "app",
}


def load_config(config_file: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from a JSON file, then apply environment overrides"""
    config: Dict[str, Any] = {}

    if config_file is None:
        config_file = os.getenv("RAFFLE_CONFIG_FILE") or DEFAULT_CONFIG_FILE
    config_path = Path(config_file)

    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                config.update(json.load(f))
            logger.info(f"Loaded configuration from {config_path}")
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading config file {config_path}: {e}")
    else:
        logger.warning(f"Config file {config_path} not found. Will only use environment variables.")

    config = _apply_env_overrides(config)
    logger.debug(f"Configuration after applying environment overrides: {json.dumps(config, indent=2)}")

    return config


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to configuration"""
    for key, value in os.environ.items():
        # RAFFLE_ENTRANCE_FEE_ETH -> config["raffle"]["entrance_fee_eth"]
        for prefix, section in ENV_SECTIONS.items():
            if key.startswith(prefix):
                name = key[len(prefix):].lower()
                break
        else:
            continue

        if section == "raffle" and name == "config_file":
            continue
        config.setdefault(section, {})[name] = _decode_env_value(value)

    return config


def _decode_env_value(value: str) -> Any:
    """JSON values (numbers, booleans, objects) are decoded; anything else stays a string"""
    try:
        return json.loads(value)
    except ValueError:
        return value


def get_config_value(config: Dict[str, Any], key_path: str, default=None):
    """Get configuration value by dot-separated key path"""
    keys = key_path.split('.')
    value = config

    try:
        for key in keys:
            value = value[key]
        return value
    except (KeyError, TypeError):
        return default


def get_network(config: Dict[str, Any]) -> str:
    network = str(get_config_value(config, "app.network", "local")).lower()
    if network not in NETWORK_PRESETS:
        raise ValueError(f"Unknown network '{network}', expected one of {sorted(NETWORK_PRESETS)}")
    return network


def get_network_settings(config: Dict[str, Any]) -> Dict[str, Any]:
    """Network preset merged with the [raffle] and [vrf] sections."""
    settings = dict(NETWORK_PRESETS[get_network(config)])
    settings.update(config.get("raffle", {}))
    vrf_section = config.get("vrf", {})
    for key in ("base_fee_link", "fund_amount_link"):
        if key in vrf_section:
            settings[key] = vrf_section[key]
    if vrf_section.get("coordinator_address"):
        settings["vrf_coordinator"] = vrf_section["coordinator_address"]
    return settings


def to_wei(amount: Any) -> int:
    """Convert an ether-denominated amount (str, int, float or Decimal) to wei."""
    return int(Web3.to_wei(Decimal(str(amount)), "ether"))


def build_raffle_config(config: Dict[str, Any], vrf_coordinator: Optional[str] = None) -> RaffleConfig:
    """Build the immutable raffle parameters for the configured network.

    ``vrf_coordinator`` overrides the preset address, which is how a locally
    created coordinator is wired in.
    """
    settings = get_network_settings(config)

    coordinator = vrf_coordinator or settings.get("vrf_coordinator")
    if not coordinator:
        raise ValueError("No VRF coordinator address configured")

    if "entrance_fee_wei" in settings:
        entrance_fee = int(settings["entrance_fee_wei"])
    else:
        entrance_fee = to_wei(settings["entrance_fee_eth"])

    return RaffleConfig(
        entrance_fee=entrance_fee,
        interval=int(settings["interval"]),
        vrf_coordinator=Web3.to_checksum_address(coordinator),
        key_hash=str(settings["key_hash"]),
        subscription_id=int(settings["subscription_id"]),
        callback_gas_limit=int(settings["callback_gas_limit"]),
        request_confirmations=int(settings.get("request_confirmations", REQUEST_CONFIRMATIONS)),
        num_words=NUM_WORDS,
    )
