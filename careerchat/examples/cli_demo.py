"""
CareerChat CLI Demo

Interactive command-line chat against the configured providers.
Run with: python -m careerchat.examples.cli_demo [--mock]

This shows how all components work together:
1. Conversation store and session state on local files
2. Chat handler recording messages and streaming replies
3. Provider fallback (or a mock provider with --mock)
"""

import argparse
import asyncio
import logging
import sys
from typing import Iterable, List, Optional, TextIO

from careerchat.api.chat_handler import ChatHandler
from careerchat.api.streaming import decode_frames
from careerchat.core.config import get_settings
from careerchat.core.conversation_store import ConversationStore
from careerchat.core.llm_client import CompletionProvider, MockProvider, build_provider_chain
from careerchat.core.state_storage import StateStorage, create_state_storage
from careerchat.services.orchestrator import ChatOrchestrator
from careerchat.services.session_state import SessionRegistry

# Configure logging
logging.basicConfig(
    level=logging.WARNING,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

BLUE = '\033[94m'
GREEN = '\033[92m'
RED = '\033[91m'
BOLD = '\033[1m'
RESET = '\033[0m'


async def run_demo(
    lines: Iterable[str],
    store: ConversationStore,
    storage: StateStorage,
    providers: List[CompletionProvider],
    out: TextIO = sys.stdout
) -> Optional[str]:
    """
    Send each line as a user message on one thread, printing replies as they stream.

    Returns:
        The thread id used, or None if no message was sent
    """
    await store.init_models()
    sessions = SessionRegistry(storage)
    orchestrator = ChatOrchestrator(store, sessions, providers, chunk_delay=0)
    handler = ChatHandler(orchestrator, store, sessions)

    thread_id = None
    for line in lines:
        line = line.strip()
        if not line:
            continue
        if line in ("quit", "exit"):
            break

        relay = await handler.process_message(thread_id, line)
        thread_id = relay.thread_id

        out.write(f"\n{GREEN}{BOLD}[ASSISTANT]{RESET} ")
        async for frame in relay.frames():
            for payload in decode_frames(frame):
                if payload is None:
                    continue
                color = RED if payload.get("error") else ""
                out.write(f"{color}{payload['content']}{RESET if color else ''}")
            out.flush()
        out.write("\n")

    return thread_id


def _stdin_lines():
    while True:
        try:
            yield input(f"\n{BLUE}{BOLD}[YOU]{RESET} ")
        except EOFError:
            return


def main():
    parser = argparse.ArgumentParser(description="CareerChat CLI demo")
    parser.add_argument("--mock", action="store_true", help="Use the mock provider")
    args = parser.parse_args()

    settings = get_settings()
    store = ConversationStore(settings.database.url)
    storage = create_state_storage(settings)
    providers = [MockProvider(streaming=True)] if args.mock else build_provider_chain(settings)

    print("\n" + "=" * 60)
    print("CareerChat - type a message, 'quit' to exit")
    print("=" * 60)

    async def _run():
        try:
            await run_demo(_stdin_lines(), store, storage, providers)
        finally:
            await storage.close()
            await store.close()

    asyncio.run(_run())


if __name__ == "__main__":
    main()
