import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "environment": "development",  # "production" rejects unsigned/mis-signed webhooks
    "bot_login": "greptile-apps[bot]",
    "credit_amount": 500,  # minor currency units
    "currency": "usd",
    "auto_credit": True,  # credit automatically when a bot review passes
    "payment_account_prefix": "cus_",
    "fallback_email_domain": "example.dev",
    "store": "memory",  # "memory" | "sqlite"
    "store_path": ".prbounty.db",
    "review_service_url": "https://api.greptile.com/v2",
    "review_branch": "main",
    "request_review_on_open": False,
    "request_timeout": 20,  # seconds, for every outbound call
    "cache_ttl_seconds": 3600,
    "cache_max_entries": 256,
    "pending_timeout_minutes": None,  # None = a pending review never times out into "error"
    "credit_claim_timeout_minutes": 15,  # a payout claim older than this may be taken over
    "host": "127.0.0.1",
    "port": 8787,
}


def load_config(config_path: str = ".prbounty.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prbounty.yml in the current directory
      3. CLI argument overrides
    Secrets are never read from the file, only from the environment.
    """
    config = dict(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    if os.environ.get("PRBOUNTY_ENV"):
        config["environment"] = os.environ["PRBOUNTY_ENV"]

    # Resolve credentials from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["webhook_secret"] = os.environ.get("GITHUB_WEBHOOK_SECRET")
    config["review_service_api_key"] = os.environ.get("GREPTILE_API_KEY")
    config["payments_api_key"] = os.environ.get("STRIPE_SECRET_KEY")

    return config


def is_production(config: dict) -> bool:
    return str(config.get("environment", "")).strip().lower() == "production"
