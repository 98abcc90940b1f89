"""Runtime configuration for the registrar service and resolver.

Settings come from an optional YAML file (``VIRT_CONFIG``, default
``~/.virt/config.yaml``) and are then overridden by ``VIRT_*`` environment
variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG_PATH = Path.home() / ".virt" / "config.yaml"
DEFAULT_DATA_DIR = Path.home() / ".virt" / "registry"
DEFAULT_REGISTRAR_URL = "http://127.0.0.1:3001"

# Environment variable -> (settings field, converter)
_ENV_OVERRIDES = {
    "VIRT_DATA_DIR": ("data_dir", Path),
    "VIRT_REGISTRAR_URL": ("registrar_url", str),
    "VIRT_TIMEOUT": ("timeout", float),
    "VIRT_RETRIES": ("retries", int),
    "VIRT_HOST": ("host", str),
    "VIRT_PORT": ("port", int),
    "VIRT_PBKDF2_ITERATIONS": ("pbkdf2_iterations", int),
}


@dataclass
class Settings:
    """Configuration shared by the registrar server, the CLI and the resolver."""

    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)
    registrar_url: str = DEFAULT_REGISTRAR_URL
    timeout: float = 5.0  # seconds, per network call
    retries: int = 1  # extra attempts on transport errors
    host: str = "127.0.0.1"
    port: int = 3001
    pbkdf2_iterations: int = 200_000

    @classmethod
    def load(
        cls,
        path: Optional[str | Path] = None,
        environ: Optional[dict[str, str]] = None,
    ) -> "Settings":
        """Build settings from a YAML file and the environment.

        A missing file is not an error; an unreadable or malformed one is.
        """
        env = os.environ if environ is None else environ
        config_path = Path(path or env.get("VIRT_CONFIG") or DEFAULT_CONFIG_PATH)

        values: dict = {}
        if config_path.exists():
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError(f"Config file {config_path} must contain a mapping")
            known = {f.name for f in fields(cls)}
            values.update({k: v for k, v in data.items() if k in known})

        for var, (name, convert) in _ENV_OVERRIDES.items():
            if env.get(var):
                values[name] = convert(env[var])

        if "data_dir" in values:
            values["data_dir"] = Path(values["data_dir"]).expanduser()
        return cls(**values)
