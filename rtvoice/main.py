"""Terminal entry point for a realtime voice session."""

from __future__ import annotations

import asyncio
import logging
import sys

from .config import Config
from .models import ConversationItem, SessionStatus
from .session import RealtimeSession

LOGGER = logging.getLogger(__name__)

HELP = 'Commands: [m] toggle mute, [r] request a response, [q] quit'


def setup_logging() -> None:
	"""Configure clean, consistent logging for the application."""
	log_format = '%(levelname)-8s | %(message)s'
	logging.basicConfig(level=logging.INFO, format=log_format, datefmt='')

	logging.getLogger('rtvoice').setLevel(logging.INFO)
	logging.getLogger('asyncio').setLevel(logging.WARNING)
	logging.getLogger('aiortc').setLevel(logging.WARNING)
	logging.getLogger('aioice').setLevel(logging.WARNING)
	logging.getLogger('aiohttp').setLevel(logging.WARNING)


def describe_item(item: ConversationItem) -> str:
	"""One-line rendering of a transcript entry."""
	if item.function_call is not None:
		return f'[{item.role}] {item.function_call.name}({item.function_call.arguments})'
	if item.function_call_output is not None:
		return f'[{item.role}] -> {item.function_call_output}'
	if item.text:
		return f'[{item.role}] {item.text}'
	if item.audio:
		return f'[{item.role}] <{len(item.audio)} bytes of audio>'
	return f'[{item.role}] ({item.type})'


async def command_loop(session: RealtimeSession) -> None:
	"""Read single-letter commands from stdin until quit or EOF."""
	loop = asyncio.get_running_loop()
	print(HELP)
	while True:
		line = await loop.run_in_executor(None, sys.stdin.readline)
		if not line:
			return
		command = line.strip().lower()
		if command in {'q', 'quit', 'exit'}:
			return
		if command == 'm':
			muted = session.toggle_mute()
			print('Microphone muted.' if muted else 'Microphone live.')
		elif command == 'r':
			if not session.request_response():
				print('Events channel is not open yet.')
		elif command:
			print(HELP)


async def run_session(session: RealtimeSession) -> int:
	"""Connect, print what happens and run the command loop."""

	def on_status(status: SessionStatus) -> None:
		print(f'Status: {status.value}')
		if status is SessionStatus.ERROR:
			print(f'Error: {session.last_error}')

	def on_item(item: ConversationItem) -> None:
		LOGGER.debug('Item updated: %s', describe_item(item))

	session.add_status_listener(on_status)
	session.conversation.add_listener(on_item)

	await session.connect()
	if session.status is not SessionStatus.CONNECTED:
		return 1

	try:
		await command_loop(session)
	finally:
		for item in session.conversation:
			print(describe_item(item))
		await session.disconnect()
	return 0


async def main() -> None:
	setup_logging()

	if not Config.validate():
		sys.exit(1)

	Config.log_config()

	async with RealtimeSession.from_config() as session:
		code = await run_session(session)
	sys.exit(code)


if __name__ == '__main__':
	try:
		asyncio.run(main())
	except KeyboardInterrupt:
		print('\nInterrupted.')
