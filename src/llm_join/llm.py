from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

import httpx

from .exceptions import (
    AuthenticationError,
    EmptyMessageError,
    EndpointNotFoundError,
    LLMConnectionError,
    MalformedResponseError,
    ServiceError,
)

if TYPE_CHECKING:
    from .config import LLMRequestConfig

logger = logging.getLogger(__name__)

PROBE_MODEL = "gpt-4.1-nano"
PROBE_TIMEOUT = 10.0


@dataclass(frozen=True)
class ServiceStatus:
    success: bool
    message: str


def _build_body(message: str, model: str, temperature: float, max_tokens: int) -> Dict[str, Any]:
    return {
        "model": model,
        "messages": [{"role": "user", "content": message}],
        "temperature": temperature,
        "max_tokens": max_tokens,
    }


def _post(
    url: str,
    api_key: str,
    body: Dict[str, Any],
    timeout: float,
    client: Optional[httpx.Client] = None,
) -> httpx.Response:
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    poster = client.post if client is not None else httpx.post
    try:
        return poster(url, json=body, headers=headers, timeout=timeout)
    except httpx.TimeoutException as e:
        raise LLMConnectionError(f"Request timed out after {timeout}s: {e}") from e
    except httpx.TransportError as e:
        raise LLMConnectionError(f"Request failed: {e}") from e


def _raise_for_status(response: httpx.Response) -> None:
    status = response.status_code
    if status == 200:
        return
    body = response.text
    if status == 401:
        raise AuthenticationError(f"Authentication failed - check your API key: {body}")
    if status == 404:
        raise EndpointNotFoundError(f"Endpoint not found - check your URL: {body}")
    raise ServiceError(status, body)


def _extract_content(response: httpx.Response) -> str:
    raw = response.text
    try:
        data = response.json()
    except ValueError as e:
        raise MalformedResponseError(f"invalid JSON ({e})", raw) from e

    choices = data.get("choices") if isinstance(data, dict) else None
    if not choices or not isinstance(choices, list):
        raise MalformedResponseError("Invalid response structure: no choices found", raw)

    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if content is None:
        raise MalformedResponseError("Invalid response structure: no message content found", raw)
    return str(content)


def chat_llm(
    message: str,
    config: LLMRequestConfig,
    *,
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    timeout: Optional[float] = None,
    client: Optional[httpx.Client] = None,
) -> str:
    """
    Send one user message to the chat-completion endpoint and return the reply text.

    Parameters
    ----------
    message : str
        Prompt to send. Must not be empty.
    config : LLMRequestConfig
        Endpoint, credential and request defaults.
    model, temperature, max_tokens, timeout : optional
        Per-call overrides of the values held by ``config``.
    client : httpx.Client, optional
        Client to send the request with; ``httpx.post`` is used otherwise.

    Returns
    -------
    str
        Content of the first choice.

    Raises
    ------
    EmptyMessageError, AuthenticationError, EndpointNotFoundError,
    ServiceError, LLMConnectionError, MalformedResponseError
    """
    if message is None or not str(message).strip():
        raise EmptyMessageError("Message cannot be empty")

    model = model or config.model
    temperature = config.temperature if temperature is None else temperature
    max_tokens = config.max_tokens if max_tokens is None else max_tokens
    timeout = config.timeout if timeout is None else timeout

    if temperature < 0 or temperature > 1:
        clamped = min(max(float(temperature), 0.0), 1.0)
        logger.warning(f"Temperature must be between 0 and 1, got {temperature}; using {clamped}")
        temperature = clamped

    body = _build_body(str(message), model, temperature, max_tokens)
    logger.debug(f"Calling {config.url} with model={model}, temp={temperature}, prompt={len(body['messages'][0]['content'])} chars")

    response = _post(config.url, config.api_key, body, timeout, client)
    _raise_for_status(response)
    content = _extract_content(response)
    logger.debug(f"LLM response length: {len(content)} chars")
    return content


def probe_llm_service(config: LLMRequestConfig, client: Optional[httpx.Client] = None) -> ServiceStatus:
    """Send the smallest possible request and report whether the service answers."""
    body = _build_body("hi", PROBE_MODEL, 0, 1)
    try:
        response = _post(config.url, config.api_key, body, PROBE_TIMEOUT, client)
    except LLMConnectionError as e:
        return ServiceStatus(False, f"Connection error: {e}")

    status = response.status_code
    if status == 200:
        return ServiceStatus(True, "Service is working")
    if status == 401:
        return ServiceStatus(False, "Authentication failed - check your API key")
    if status == 404:
        return ServiceStatus(False, "Endpoint not found - check your URL")
    return ServiceStatus(False, f"Service error: {response.text}")
