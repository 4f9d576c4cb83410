from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

from .errors import ConfigurationError

load_dotenv()

CONFIG_PATH = Path(__file__).resolve().parent / "config" / "defaults.yaml"

# Environment variable -> dotted config key.
ENV_OVERRIDES: Dict[str, str] = {
    "HOST": "server.host",
    "PORT": "server.port",
    "SITE_URL": "server.site_url",
    "JOB_TIMEOUT_SECONDS": "jobs.timeout_seconds",
    "WORK_ROOT": "jobs.work_root",
    "GENERATION_PROVIDER": "generation.provider",
    "GENERATION_MODEL": "generation.model",
    "GENERATION_PREMIUM_MODEL": "generation.premium_model",
    "PDFLATEX_COMMAND": "compiler.command",
    "STORAGE_BACKEND": "storage.backend",
    "TRUSTED_PROXY_HOPS": "rate_limit.trusted_proxy_hops",
    "LOG_LEVEL": "logging.level",
}

PROVIDER_KEYS: Dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "google": "GOOGLE_GENERATIVE_AI_API_KEY",
}

AUTH_TOKEN_KEY = "AUTH_TOKEN"


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not CONFIG_PATH.exists():
        raise FileNotFoundError(f"Default config not found at {CONFIG_PATH}")
    return OmegaConf.load(CONFIG_PATH)


def get_default_config_container(resolve: bool = False) -> Dict[str, Any]:
    config = _load_default_config()
    return OmegaConf.to_container(config, resolve=resolve)  # type: ignore[return-value]


def environment_overrides(environ: Optional[Mapping[str, str]] = None) -> List[str]:
    """Translate recognised environment variables into an OmegaConf dotlist."""
    environ = os.environ if environ is None else environ
    dotlist = []
    for env_name, key in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            dotlist.append(f"{key}={value}")
    return dotlist


def make_runtime_config(
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> DictConfig:
    base = OmegaConf.create(get_default_config_container(resolve=False))
    OmegaConf.set_struct(base, True)

    env_config = OmegaConf.from_dotlist(environment_overrides(environ))
    merged = OmegaConf.merge(base, env_config, OmegaConf.create(overrides or {}))
    return DictConfig(merged)


def get_credential(name: str, environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    environ = os.environ if environ is None else environ
    return environ.get(name) or None


def validate_environment(config: DictConfig, environ: Optional[Mapping[str, str]] = None) -> None:
    """
    Fail fast when credentials needed by the selected providers are absent.

    Storage credentials are checked by the storage backends themselves when
    they are constructed.

    Raises:
        ConfigurationError: listing every missing variable
    """
    missing = []
    if not get_credential(AUTH_TOKEN_KEY, environ):
        missing.append(AUTH_TOKEN_KEY)

    provider = config.generation.provider
    key_name = PROVIDER_KEYS.get(provider)
    if key_name is None:
        raise ConfigurationError(f"Unsupported generation provider: {provider!r}")
    if not get_credential(key_name, environ):
        missing.append(key_name)

    if missing:
        raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")
