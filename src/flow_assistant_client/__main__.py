import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from flow_assistant_client.api_client import FlowApiClient
from flow_assistant_client.app_config import load_json_config, parse_app_config, resolve_runtime_env
from flow_assistant_client.auth import StaticTokenProvider
from flow_assistant_client.commands.router import CommandRouter
from flow_assistant_client.conversation import Conversation
from flow_assistant_client.logging_config import setup_logging
from flow_assistant_client.models import ChatMessage, MessageType
from flow_assistant_client.polling.controller import PollingController
from flow_assistant_client.sessions import MessageSubmitter, SessionManager

_LINE_PREFIX = "assistant> "

_HELP_TEXT = """Commands:
  /help           Show this help
  /new [flow_id]  Start a new session (defaults to the configured FlowId)
  /status         Show session and polling state
  /retry          Resend the last failed message
  exit | quit     Leave"""


def _print_message(message: ChatMessage) -> None:
    if message.type is MessageType.HUMAN:
        return
    if message.type is MessageType.ERROR:
        print(f"\n{_LINE_PREFIX}[error] {message.content}")
        return
    print(f"\n{_LINE_PREFIX}{message.content}")


async def main() -> None:
    load_dotenv()

    env = resolve_runtime_env()
    config = parse_app_config(load_json_config(), env)

    log_descriptions = setup_logging(
        level=config.log_level,
        consumers=config.log_consumers,
        console_level=config.console_log_level,
    )

    if not env.access_token:
        logger.error(f"{env.access_token_env_var} environment variable is required.")
        sys.exit(1)
    if not config.flow_id:
        logger.error("FlowId must be set in config.json.")
        sys.exit(1)

    client = FlowApiClient(
        config.api_base_url,
        StaticTokenProvider(env.access_token),
        timeout_seconds=config.request_timeout_seconds,
        max_attempts=config.max_retry_attempts,
    )
    sessions = SessionManager(client)
    conversation = Conversation(
        sessions,
        MessageSubmitter(client, sessions),
        PollingController(
            client,
            policy=config.cadence_policy(),
            delivery_mode=config.delivery_mode,
            poll_timeout_seconds=config.poll_timeout_seconds,
        ),
        workspace_id=config.workspace_id,
        degraded_after_failures=config.degraded_after_failures,
        on_message=_print_message,
    )

    async def on_help() -> None:
        print(_HELP_TEXT)

    async def on_new(flow_id: str) -> None:
        conversation.clear_session()
        if await conversation.initialize_session(flow_id or config.flow_id, session_name=config.session_name):
            print(f"{_LINE_PREFIX}New session: {conversation.state.current_session.session_id}")
        else:
            print(f"{_LINE_PREFIX}{conversation.state.error}")

    async def on_status() -> None:
        state = conversation.state
        session = state.current_session
        if session is None:
            print(f"{_LINE_PREFIX}No active session")
            return
        controller = conversation.controller
        print(
            f"{_LINE_PREFIX}session={session.session_id} flow={session.flow_id} "
            f"polling={controller.is_running} cursor={controller.cursor} "
            f"interval={controller.current_interval_ms}ms failures={controller.consecutive_failures} "
            f"degraded={conversation.connection_degraded} messages={len(state.messages)}"
        )

    async def on_retry() -> None:
        if not await conversation.retry_last_message():
            print(f"{_LINE_PREFIX}Nothing to retry")

    def on_unknown(command: str) -> None:
        print(f"{_LINE_PREFIX}Unknown command: {command} (try /help)")

    router = CommandRouter(
        on_help=on_help,
        on_new=on_new,
        on_status=on_status,
        on_retry=on_retry,
        on_unknown=on_unknown,
    )

    print("flow-assistant-client (type 'exit' to quit, '/help' for commands)")
    if log_descriptions:
        print(f"Logging: {', '.join(log_descriptions)}")

    try:
        if not await conversation.initialize_session(config.flow_id, session_name=config.session_name):
            print(f"{_LINE_PREFIX}{conversation.state.error}")
            return
        print(f"{_LINE_PREFIX}Session: {conversation.state.current_session.session_id}")
        print()

        while True:
            try:
                user_input = await asyncio.to_thread(input, "you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()
            if trimmed in ("exit", "quit"):
                break
            if not trimmed:
                continue
            if await router.try_handle(trimmed):
                continue

            if not await conversation.send_message(trimmed):
                print(f"{_LINE_PREFIX}{conversation.state.error}")
    finally:
        await conversation.close()
        await client.aclose()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
