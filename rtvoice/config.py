"""Configuration management for the realtime voice client."""

from __future__ import annotations

import logging
import os
from typing import Callable, Optional, TypeVar

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

Number = TypeVar('Number', int, float)

load_dotenv()


def _env_number(name: str, default: Number, cast: Callable[[str], Number]) -> Number:
	"""Read a numeric setting; unset, blank or unparsable values give ``default``."""
	raw = os.getenv(name, '').strip()
	if not raw:
		return default
	try:
		return cast(raw)
	except ValueError:
		logger.warning('%s=%r is not a valid %s, using %s', name, raw, cast.__name__, default)
		return default


def _parse_list(name: str) -> list[str]:
	"""Return a comma separated environment variable as a list of stripped values."""
	value = os.getenv(name, '')
	return [item.strip() for item in value.split(',') if item.strip()]


class Config:
	"""Centralized configuration for the realtime session."""

	OPENAI_API_KEY: str = os.getenv('OPENAI_API_KEY', '')
	OPENAI_API_BASE: str = os.getenv('OPENAI_API_BASE', 'https://api.openai.com/v1').rstrip('/')

	# The session model mints the ephemeral key, the realtime model answers the SDP offer.
	SESSION_MODEL: str = os.getenv('REALTIME_SESSION_MODEL', 'gpt-4o-mini-realtime-preview')
	REALTIME_MODEL: str = os.getenv('REALTIME_MODEL', 'gpt-4o-realtime-preview-2024-12-17')
	VOICE: str = os.getenv('REALTIME_VOICE', 'verse')

	# Server VAD tuning sent in session.update.
	VAD_THRESHOLD: float = _env_number('REALTIME_VAD_THRESHOLD', 0.5, float)
	VAD_PREFIX_PADDING_MS: int = _env_number('REALTIME_VAD_PREFIX_PADDING_MS', 300, int)
	VAD_SILENCE_DURATION_MS: int = _env_number('REALTIME_VAD_SILENCE_DURATION_MS', 200, int)

	# Empty means host candidates only, which is what the service expects.
	ICE_SERVERS: list[str] = _parse_list('REALTIME_ICE_SERVERS')

	# Passed straight to aiortc's MediaPlayer, e.g. "default" with format "pulse".
	MIC_DEVICE: Optional[str] = os.getenv('REALTIME_MIC_DEVICE') or None
	MIC_FORMAT: Optional[str] = os.getenv('REALTIME_MIC_FORMAT') or None

	RECORD_PATH: Optional[str] = os.getenv('REALTIME_RECORD_PATH') or None

	ESCALATE_CHANNEL_ERRORS: bool = os.getenv('REALTIME_ESCALATE_CHANNEL_ERRORS', 'false').lower() in {'true', '1', 'yes'}

	INSTRUCTIONS: str = os.getenv('REALTIME_INSTRUCTIONS', 'Please assist the user.')

	@classmethod
	def validate(cls) -> bool:
		"""Ensure required keys exist before running."""
		if not cls.OPENAI_API_KEY:
			logger.error('Missing OPENAI_API_KEY. Set it in your environment.')
			return False
		return True

	@classmethod
	def log_config(cls) -> None:
		"""Print non-sensitive settings to stdout."""
		print('Configuration:')
		print(f'  API Base: {cls.OPENAI_API_BASE}')
		print(f'  OpenAI API Key: {"set" if bool(cls.OPENAI_API_KEY) else "missing"}')
		print(f'  Session Model: {cls.SESSION_MODEL}')
		print(f'  Realtime Model: {cls.REALTIME_MODEL}')
		print(f'  Voice: {cls.VOICE}')
		print(
			f'  Server VAD: threshold={cls.VAD_THRESHOLD} '
			f'prefix_padding_ms={cls.VAD_PREFIX_PADDING_MS} '
			f'silence_duration_ms={cls.VAD_SILENCE_DURATION_MS}'
		)
		print(f'  ICE Servers: {", ".join(cls.ICE_SERVERS) if cls.ICE_SERVERS else "none"}')
		print(f'  Microphone: {cls.MIC_DEVICE or "silence"}')
		if cls.RECORD_PATH:
			print(f'  Recording remote audio to: {cls.RECORD_PATH}')
