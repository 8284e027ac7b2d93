"""
Credential store and request configuration.

The credential file is YAML with a single ``default`` section::

    default:
      LLM_URL: "https://api.openai.com/v1/chat/completions"
      LLM_key: "sk-..."
      VERIFIED: true

``VERIFIED`` is written after the first successful connectivity check so
later calls skip the network round trips.
"""

import logging
import os
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Union

import httpx
import yaml

from .exceptions import ConfigurationError
from .llm import probe_llm_service

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "~/.LLMJOIN.yml"
CONFIG_ENV_VAR = "LLMJOIN_CONFIG"
DEFAULT_MODEL = "gpt-4.1-mini"
DEFAULT_TEMPERATURE = 0.0
DEFAULT_MAX_TOKENS = 1000
DEFAULT_TIMEOUT = 30.0
HEAD_TIMEOUT = 5.0

_URL_RE = re.compile(r"^https?://")

PathLike = Union[str, Path]


@dataclass(frozen=True)
class LLMRequestConfig:
    url: str
    api_key: str
    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    timeout: float = DEFAULT_TIMEOUT
    verified: bool = False

    def with_options(self, **overrides) -> "LLMRequestConfig":
        """Return a copy with the given fields replaced; ``None`` values are ignored."""
        overrides = {k: v for k, v in overrides.items() if v is not None}
        if not overrides:
            return self
        return replace(self, **overrides)

    def __repr__(self) -> str:
        return (
            f"LLMRequestConfig(url={self.url!r}, api_key='***', model={self.model!r}, "
            f"temperature={self.temperature}, max_tokens={self.max_tokens}, "
            f"timeout={self.timeout}, verified={self.verified})"
        )


def config_path(path: Optional[PathLike] = None) -> Path:
    if path is None:
        path = os.getenv(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def set_llm(url: str, key: str, path: Optional[PathLike] = None) -> Path:
    """
    Store the LLM endpoint and API key in the credential file.

    Parameters
    ----------
    url : str
        Full chat-completion URL of the provider (a local ollama works too).
    key : str
        API key sent as a bearer token.
    path : str or Path, optional
        Target file. Defaults to ``$LLMJOIN_CONFIG`` or ``~/.LLMJOIN.yml``.

    Returns
    -------
    Path
        The file written.
    """
    if url is None or key is None:
        raise ConfigurationError("Both 'url' and 'key' must be provided")
    if not isinstance(url, str) or not isinstance(key, str):
        raise ConfigurationError("Both 'url' and 'key' must be character strings")
    if not _URL_RE.match(url):
        logger.warning("URL should start with 'http://' or 'https://'")

    target = config_path(path)
    _write(target, {"LLM_URL": url, "LLM_key": key})
    logger.info(f"LLM services stored in `{target}`.")
    return target


def _write(target: Path, section: dict) -> None:
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8") as f:
            yaml.safe_dump({"default": section}, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Failed to write config file: {e}") from e


def read_config_file(path: Optional[PathLike] = None) -> dict:
    """Load the ``default`` section of the credential file and check its required fields."""
    target = config_path(path)
    if not target.exists():
        raise ConfigurationError("Configuration file not set. Use `set_llm()` to set up your LLM services.")

    try:
        with open(target, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Invalid config file: {e}") from e

    section = data.get("default") if isinstance(data, dict) else None
    if not isinstance(section, dict) or not section.get("LLM_URL") or not section.get("LLM_key"):
        raise ConfigurationError("Invalid configuration: missing URL or key.")
    return section


def mark_verified(path: Optional[PathLike] = None) -> None:
    target = config_path(path)
    section = dict(read_config_file(target))
    section["VERIFIED"] = True
    _write(target, section)


def validate_llm_config(
    path: Optional[PathLike] = None,
    client: Optional[httpx.Client] = None,
    **overrides,
) -> LLMRequestConfig:
    """
    Build an ``LLMRequestConfig`` from the credential file, verifying it once.

    A file already flagged ``VERIFIED`` is trusted as is. Otherwise the URL
    format is checked, the host is reached with a HEAD request and a minimal
    chat request is sent; on success the file is flagged so later calls skip
    these checks.

    Raises
    ------
    ConfigurationError
        Missing or invalid file, bad URL, unreachable host or failed probe.
    """
    target = config_path(path)
    section = read_config_file(target)
    config = LLMRequestConfig(
        url=str(section["LLM_URL"]),
        api_key=str(section["LLM_key"]),
        verified=section.get("VERIFIED") is True,
    ).with_options(**overrides)

    if config.verified:
        logger.info("Configuration already verified, pass verification.")
        return config

    logger.info("Using new LLM service, verifying ...")
    if not _URL_RE.match(config.url):
        raise ConfigurationError("Invalid URL format")

    logger.info("Test Network Connection...")
    try:
        if client is not None:
            client.head(config.url, timeout=HEAD_TIMEOUT)
        else:
            httpx.head(config.url, timeout=HEAD_TIMEOUT)
    except httpx.HTTPError as e:
        raise ConfigurationError(f"Cannot reach URL: {e}") from e
    logger.info("Network Connection Test Passed.")

    logger.info("Test Authentication...")
    status = probe_llm_service(config, client=client)
    if not status.success:
        raise ConfigurationError(
            "There might be an issue with the authentication, causing your LLM service "
            f"to be inaccessible: {status.message}"
        )

    logger.info("LLM service configured and working correctly!")
    mark_verified(target)
    return replace(config, verified=True)
