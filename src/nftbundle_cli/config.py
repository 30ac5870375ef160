"""Configuration management for the nftbundle CLI."""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict

from nftbundle.config import DEFAULT_RELAY_URL

# Default configuration directory
CONFIG_DIR = Path.home() / ".nftbundle"
CONFIG_FILE = CONFIG_DIR / "config.json"

DEFAULT_CONFIG = {
    "network": "mainnet",
    "relay_url": DEFAULT_RELAY_URL,
}


def load_config() -> Dict[str, Any]:
    """Load configuration from file and environment."""
    config = DEFAULT_CONFIG.copy()

    # Load from file if exists
    if CONFIG_FILE.exists():
        try:
            with open(CONFIG_FILE) as f:
                config.update(json.load(f))
        except (json.JSONDecodeError, IOError):
            pass

    # Override with environment variables
    if os.environ.get("NFTBUNDLE_RPC_URL"):
        config["rpc_url"] = os.environ["NFTBUNDLE_RPC_URL"]
    if os.environ.get("NFTBUNDLE_RELAY_URL"):
        config["relay_url"] = os.environ["NFTBUNDLE_RELAY_URL"]
    if os.environ.get("NFTBUNDLE_NETWORK"):
        config["network"] = os.environ["NFTBUNDLE_NETWORK"]
    if os.environ.get("OPENSEA_API_KEY"):
        config["api_key"] = os.environ["OPENSEA_API_KEY"]

    return config
