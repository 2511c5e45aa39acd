"""Exchange the long-lived API key for an ephemeral realtime credential."""

from __future__ import annotations

import asyncio
import json
import logging

import aiohttp

from .errors import CredentialError
from .models import EphemeralCredential

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.openai.com/v1"


async def acquire_credential(
    http: aiohttp.ClientSession,
    api_key: str,
    model: str,
    voice: str,
    *,
    base_url: str = DEFAULT_API_BASE,
) -> EphemeralCredential:
    """
    Mint a short-lived session credential.

    Args:
        http: Shared aiohttp session used for the request
        api_key: Standard API key, sent as a bearer token
        model: Realtime model the session is created for
        voice: Voice the assistant speaks with

    Returns:
        The ephemeral credential found at ``client_secret.value``

    Raises:
        CredentialError: On network failure, a non-2xx status, a body that is
            not UTF-8 JSON or a body without a string ``client_secret.value``.
    """
    url = f"{base_url}/realtime/sessions"
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    payload = {"model": model, "voice": voice}

    try:
        async with http.post(url, json=payload, headers=headers) as resp:
            raw = await resp.read()
            status = resp.status
    except (aiohttp.ClientError, asyncio.TimeoutError) as error:
        raise CredentialError(f"Error fetching ephemeral key: {error}") from error

    if not 200 <= status < 300:
        snippet = raw[:200].decode("utf-8", errors="replace")
        raise CredentialError(f"Session endpoint returned status {status}: {snippet}")

    try:
        body = raw.decode("utf-8")
    except UnicodeDecodeError as error:
        raise CredentialError("Session endpoint returned a body that is not UTF-8") from error

    try:
        data = json.loads(body)
    except ValueError as error:
        raise CredentialError("Session endpoint returned malformed JSON") from error

    client_secret = data.get("client_secret") if isinstance(data, dict) else None
    value = client_secret.get("value") if isinstance(client_secret, dict) else None
    if not isinstance(value, str) or not value:
        raise CredentialError("Could not parse ephemeral key from session response")

    expires_at = client_secret.get("expires_at")
    if not isinstance(expires_at, int):
        expires_at = None

    logger.debug("Ephemeral key acquired for model %s", model)
    return EphemeralCredential(value=value, expires_at=expires_at)
