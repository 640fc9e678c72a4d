# catsync Default Configuration
# Full default configuration as Python dict and YAML generator

from typing import Any

import yaml

DEFAULT_CONFIG: dict[str, Any] = {
    "remote": {
        "shop": "example.myshopify.com",
        "api_version": "2023-04",
        "token_env": "CATSYNC_ACCESS_TOKEN",
        "timeout": 30.0,
        "min_quota_headroom": 5,
    },
    "retry": {
        "max_retries": 3,
        "base_delay": 1.0,
        "max_delay": 30.0,
    },
    "batching": {
        "rate_limit_delay": 0.5,
        "volume_tiers": [
            {"max_items": 50, "batch_size": 10},
            {"max_items": 500, "batch_size": 50},
        ],
        "bulk_batch_size": 250,
        "max_batch_size": 250,
    },
    "priority": {
        "tier_weights": {"low": 100.0, "normal": 200.0, "high": 300.0, "critical": 400.0},
        "operation_weights": {"create": 10.0, "update": 5.0, "mixed": 5.0, "delete": 0.0},
        "age_factor": 0.5,
        "age_cap": 50.0,
        "promotion_minutes": {"low": 30.0, "normal": 60.0, "high": 120.0},
    },
    "detection": {
        "excluded_fields": ["created_at", "updated_at"],
    },
    "safety": {
        "read_only_mode": False,
        "volume_alert_threshold": 200,
    },
    "storage": {
        "session_store": "~/.config/catsync/sessions.yaml",
        "data_dir": "~/.config/catsync/data",
    },
    "datasets": {
        "products": {
            "kind": "product",
            "path": "products.csv",
            "description": "Catalog products",
        },
        "variants": {
            "kind": "variant",
            "path": "variants.csv",
            "description": "Product variants (product_id required for new rows)",
        },
        "product_metafields": {
            "kind": "metafield",
            "path": "product_metafields.csv",
            "description": "Metafields owned by products",
            "owner_kind": "product",
        },
    },
    "output": {
        "verbose": False,
        "colored": True,
        "log_file": "~/.config/catsync/sync.log",
        "log_level": "INFO",
    },
}


def generate_default_config() -> str:
    """Generate default configuration as YAML string with comments."""
    header = """# catsync - Catalog Sync Configuration
#
# Rows of each dataset CSV mirror one remote resource kind.
# Only rows whose content fingerprint (_hash) changed are sent.
#
# Bookkeeping columns written by catsync:
#   - id:              remote id (written after create)
#   - _hash:           fingerprint of the last synced content
#   - _last_synced_at: timestamp of the last successful sync
#
# Columns read by catsync:
#   - _action:         'delete' to remove the remote resource
#   - _priority:       low | normal | high | critical
#   - owner_resource:  product | variant (metafield rows)
#
# The access token is read from the environment variable named in remote.token_env.

"""
    return header + yaml.dump(DEFAULT_CONFIG, default_flow_style=False, sort_keys=False, allow_unicode=True)
