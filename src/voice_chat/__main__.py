import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from voice_chat.config import VoiceChatConfig
from voice_chat.log_format import configure_logging

ENV_FILE_PATH = Path.home() / ".config" / "voice-chat" / "env"

HELP_TEXT = "Enter: start/stop recording | text: send typed message | /cancel /clear /reset /quit"


def _load_env_file() -> None:
    if not ENV_FILE_PATH.exists():
        return
    with open(ENV_FILE_PATH) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, _, value = line.partition("=")
            value = value.strip("'\"")
            if key not in os.environ:
                os.environ[key] = value


class ConsolePrinter:
    """Store listener that prints assistant replies as they stream in."""

    def __init__(self, out=None) -> None:
        self._out = out or sys.stdout
        self._printed: dict[str, int] = {}

    def __call__(self, action: str, turn) -> None:
        if turn is None or turn.is_from_user:
            return
        if action == "append":
            self._printed[turn.id] = 0
            self._out.write("assistant> ")
        elif action == "update":
            shown = self._printed.get(turn.id, 0)
            self._out.write(turn.content[shown:])
            self._printed[turn.id] = len(turn.content)
            if not turn.streaming:
                self._out.write("\n")
                self._printed.pop(turn.id, None)
        elif action == "remove":
            self._out.write("\n")
            self._printed.pop(turn.id, None)
        self._out.flush()


class ConsoleCommands:
    """Applies one line of console input to the orchestrator.

    Typed messages are submitted in the background so ``/cancel`` stays
    responsive while a reply streams.
    """

    def __init__(self, orchestrator, err=None) -> None:
        self._orchestrator = orchestrator
        self._err = err or sys.stderr
        self._submits: set[asyncio.Task] = set()

    @property
    def pending_submits(self) -> set[asyncio.Task]:
        return set(self._submits)

    async def handle_line(self, line: str) -> bool:
        """Returns False when the console should stop reading."""
        orchestrator = self._orchestrator
        command = line.strip()
        if command == "/quit":
            return False
        elif command == "/cancel":
            await orchestrator.cancel()
        elif command == "/clear":
            orchestrator.clear_conversation()
        elif command == "/reset":
            await orchestrator.reset_capture()
        elif command:
            task = asyncio.create_task(self._submit(command))
            self._submits.add(task)
            task.add_done_callback(self._submits.discard)
        elif orchestrator.is_recording:
            await orchestrator.stop_recording()
        else:
            await orchestrator.start_recording()
            self._print_error()
        return True

    async def drain(self) -> None:
        if self._submits:
            await asyncio.gather(*self._submits, return_exceptions=True)

    async def _submit(self, text: str) -> None:
        await self._orchestrator.submit(text)
        self._print_error()

    def _print_error(self) -> None:
        if self._orchestrator.error_message:
            print(f"error: {self._orchestrator.error_message}", file=self._err)


def main() -> None:
    _load_env_file()
    parser = argparse.ArgumentParser(description="Voice chat with a streaming LLM")
    parser.add_argument("--model", help="Chat model to use")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("talk", help="Push-to-talk conversation (default)")

    ask_parser = subparsers.add_parser("ask", help="Send one typed message")
    ask_parser.add_argument("text", help="Message text")

    subparsers.add_parser("check", help="Run startup health checks")

    args = parser.parse_args()

    config = VoiceChatConfig()
    if args.model:
        config.model = args.model

    configure_logging(verbose=args.verbose, log_file=config.log_file)

    if args.command == "check":
        sys.exit(_run_check(config))
    elif args.command == "ask":
        sys.exit(asyncio.run(_run_ask(args.text, config)))
    else:
        asyncio.run(_run_talk(config))


def _run_check(config: VoiceChatConfig) -> int:
    from voice_chat.health import has_critical_failures, run_startup_checks

    results = run_startup_checks(config)
    for result in results:
        print(f"{'OK  ' if result.passed else 'FAIL'} {result.name}: {result.detail}")
    return 1 if has_critical_failures(results) else 0


async def _run_ask(text: str, config: VoiceChatConfig) -> int:
    from voice_chat.domain.errors import ChatClientError
    from voice_chat.domain.models import ChatTurn, StreamRequest
    from voice_chat.factory import create_chat_client, create_parameters

    client = create_chat_client(config)
    request = StreamRequest.from_turns(
        [ChatTurn.user(text)],
        parameters=create_parameters(config),
        system_prompt=config.system_prompt,
    )
    try:
        stream = await client.send_streaming_request(request)
        async for delta in stream:
            print(delta, end="", flush=True)
    except ChatClientError as exc:
        print(f"\nerror: {exc}", file=sys.stderr)
        return 1
    print()
    return 0


async def _run_talk(config: VoiceChatConfig) -> None:
    from voice_chat.domain.conversation import ConversationStore
    from voice_chat.factory import create_orchestrator
    from voice_chat.health import has_critical_failures, run_startup_checks

    results = run_startup_checks(config)
    if has_critical_failures(results):
        logging.error("Critical health check failures, aborting startup")
        sys.exit(1)

    store = ConversationStore(max_turns=config.max_history_turns)
    store.add_listener(ConsolePrinter())
    orchestrator = create_orchestrator(config, store=store)

    shutdown_event = asyncio.Event()
    shutdown_triggered = False

    def handle_signal() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            logging.warning("Forced exit")
            sys.exit(1)
        shutdown_triggered = True
        logging.info("Shutting down...")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    lines: asyncio.Queue[str] = asyncio.Queue()
    commands = ConsoleCommands(orchestrator)
    loop.add_reader(sys.stdin, lambda: lines.put_nowait(sys.stdin.readline()))

    async def input_loop() -> None:
        print(HELP_TEXT)
        while not shutdown_event.is_set():
            line = await lines.get()
            if not line:
                break
            if not await commands.handle_line(line):
                break
        shutdown_event.set()

    orchestrator_task = asyncio.create_task(orchestrator.run())
    input_task = asyncio.create_task(input_loop())

    try:
        await shutdown_event.wait()
    finally:
        loop.remove_reader(sys.stdin)
        input_task.cancel()
        await orchestrator.shutdown()
        await commands.drain()
        try:
            await asyncio.wait_for(orchestrator_task, timeout=3.0)
        except (asyncio.CancelledError, asyncio.TimeoutError):
            pass


if __name__ == "__main__":
    main()
