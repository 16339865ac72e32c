"""Interactive REPL for tenxai-chat sessions."""

from __future__ import annotations

import asyncio
import logging
import os
import sys

from . import __version__
from .chat import ChatSessionController
from .chat_logs import ChatLogClient
from .config import AppConfig
from .models import message_text_content
from .provider_router import ProviderRouter
from .store import ChatStore, DeletedSession, JsonFilePersister
from .sync import ServerSyncAdapter
from .telemetry import TelemetryConfig, configure_tracing, get_tracer
from .templates import BOT_HELLO

HELP = """Commands:
  /new            start a new session
  /list           list sessions
  /select N       switch to session N
  /delete N       delete session N (undo with /undo)
  /undo           restore the last deleted session
  /fork           copy the current session
  /reset          clear messages and memory of the current session
  /clear          toggle the context break
  /title          regenerate the title of the current session
  /load           replace local sessions with the server's
  /help           show this help
  /quit           exit
Anything else is sent to the model."""


def build_controller(config: AppConfig) -> ChatSessionController:
    """Wire store, persistence, remote sync and providers from *config*."""
    persister = JsonFilePersister(config.state_path) if config.state_path else None
    sync = None
    if config.user_id:
        client = ChatLogClient(config.api_base_url, config.user_id, timeout=config.request_timeout)
        sync = ServerSyncAdapter(client)
    store = ChatStore(config, persister=persister, sync=sync)
    return ChatSessionController(store, ProviderRouter.from_config(config), config)


def _print_sessions(controller: ChatSessionController) -> None:
    store = controller.store
    for i, session in enumerate(store.sessions):
        marker = "*" if i == store.current_session_index else " "
        print(f" {marker} [{i}] {session.topic} ({len(session.messages)} messages)")


def _parse_index(arg: str) -> int | None:
    try:
        return int(arg)
    except ValueError:
        print(f"  Not a session number: {arg!r}")
        return None


async def async_main(config: AppConfig | None = None) -> None:
    """Read commands and chat input until EOF or ``/quit``."""
    config = config or AppConfig.from_env()
    controller = build_controller(config)
    store = controller.store
    last_deleted: DeletedSession | None = None

    print(f"tenxai-chat REPL v{__version__}")
    print(f"Provider: {config.llm_provider}  Model: {store.current_session().config.model}")
    print("Type /help for commands, /quit to exit")
    print()
    if not store.current_session().messages:
        print(f"bot> {BOT_HELLO}")

    while True:
        try:
            user_input = await asyncio.to_thread(input, "you> ")
        except (EOFError, KeyboardInterrupt):
            print("\nBye!")
            break

        stripped = user_input.strip()
        if not stripped:
            continue

        command, _, arg = stripped.partition(" ")
        if command in ("/quit", "/exit"):
            print("Bye!")
            break
        if command == "/help":
            print(HELP)
        elif command == "/new":
            store.new_session()
            print("  New session started")
        elif command == "/list":
            _print_sessions(controller)
        elif command == "/select":
            index = _parse_index(arg)
            if index is not None:
                store.select_session(index)
                print(f"  Now in: {store.current_session().topic}")
        elif command == "/delete":
            index = _parse_index(arg)
            if index is not None:
                last_deleted = store.delete_session(index)
                if last_deleted is None:
                    print("  No such session")
                else:
                    topic = last_deleted.session.topic
                    print(f"  Deleted {topic!r} (/undo within {config.undo_window:g}s)")
        elif command == "/undo":
            if last_deleted is not None and last_deleted.restore():
                print(f"  Restored {last_deleted.session.topic!r}")
            else:
                print("  Nothing to undo")
            last_deleted = None
        elif command == "/fork":
            store.fork_session()
            print("  Forked current session")
        elif command == "/reset":
            store.reset_session(store.current_session())
            print("  Session reset")
        elif command == "/clear":
            store.toggle_clear_context(store.current_session())
            print("  Context break toggled")
        elif command == "/title":
            controller.summarize_session(refresh_title=True)
            await store.tasks.drain()
            print(f"  Title: {store.current_session().topic}")
        elif command == "/load":
            await controller.load_from_server()
            _print_sessions(controller)
        else:
            store.set_last_input(stripped)
            reply = await controller.on_user_input(stripped)
            if reply is not None:
                print(f"bot> {message_text_content(reply)}")

    await store.tasks.drain()


def run() -> None:
    """Entry point for the ``tenxai-chat`` command."""
    level = os.environ.get("TENXAI_LOG_LEVEL")
    if level:
        logging.basicConfig(
            level=level.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    try:
        config = AppConfig.from_env()
        telemetry = TelemetryConfig.from_env()
        if telemetry.exporter != "none":
            configure_tracing(telemetry)
    except ValueError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(2)
    try:
        asyncio.run(async_main(config))
    finally:
        get_tracer().shutdown()


if __name__ == "__main__":
    run()
