"""WebSocket CLI client for testing the relay server.

Joins a session, sends recorded clips to the paired device and saves every
clip relayed back from it.
"""

import argparse
import asyncio
import base64
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from pathlib import Path

import websockets
from pydantic import ValidationError
from websockets.asyncio.client import ClientConnection, connect

from voicerelay.transport.protocol import (
    ErrorMessage,
    JoinSessionMessage,
    LeaveSessionMessage,
    SessionStatusMessage,
    VoiceReceivedMessage,
    VoiceTransferMessage,
)

logger = logging.getLogger(__name__)


def guess_audio_extension(audio: bytes) -> str:
    """Pick a file extension from the container signature."""
    if audio[:4] == b"RIFF":
        return "wav"
    if audio[:4] == b"OggS":
        return "ogg"
    if audio[:3] == b"ID3" or audio[:2] in (b"\xff\xfb", b"\xff\xf3", b"\xff\xf2"):
        return "mp3"
    if audio[4:8] == b"ftyp":
        return "m4a"
    return "bin"


class CLIClient:
    """WebSocket CLI client for one device of a session."""

    def __init__(
        self,
        server_url: str,
        session_key: str,
        language: str = "auto",
        output_dir: Path | None = None,
        verbose: bool = False,
    ) -> None:
        """Initialize CLI client.

        Args:
            server_url: WebSocket server URL (e.g., ws://localhost:3000)
            session_key: Shared key both devices join
            language: Language this device speaks ("auto" to detect)
            output_dir: Directory for received clips (None disables saving)
            verbose: Enable verbose logging
        """
        self.server_url = server_url
        self.session_key = session_key
        self.language = language
        self.output_dir = output_dir
        self.verbose = verbose
        self.running = True
        self.status: str | None = None
        self.connected = asyncio.Event()
        self.received = 0

        level = logging.DEBUG if verbose else logging.INFO
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%H:%M:%S",
        )

    async def join(self, websocket: ClientConnection) -> None:
        message = JoinSessionMessage(session_key=self.session_key, language=self.language)
        await websocket.send(message.to_json())
        logger.debug(f"Joining session {self.session_key} as {self.language}")

    async def send_audio(self, websocket: ClientConnection, path: Path) -> None:
        """Send an audio file as one voice clip.

        Args:
            websocket: WebSocket connection
            path: Recorded clip (any container the server's transcoder reads)
        """
        audio = path.read_bytes()
        message = VoiceTransferMessage(
            audio_base64=base64.b64encode(audio).decode("ascii"),
            timestamp=datetime.now(UTC).isoformat(),
        )
        await websocket.send(message.to_json())
        print(f"\n>> Sent {path.name} ({len(audio)} bytes)")

    async def leave(self, websocket: ClientConnection) -> None:
        await websocket.send(LeaveSessionMessage().to_json())
        self.connected.clear()

    def handle_message(self, message_data: str) -> None:
        """Handle an incoming message from the server.

        Args:
            message_data: Raw JSON message from server
        """
        try:
            data = json.loads(message_data)
            msg_type = data.get("type")

            if msg_type == "sessionStatus":
                status_msg = SessionStatusMessage.model_validate(data)
                self.status = status_msg.status
                if status_msg.status == "connected":
                    self.connected.set()
                else:
                    self.connected.clear()
                print(f"\n[{status_msg.status}] {status_msg.message}")

            elif msg_type == "voiceReceived":
                voice_msg = VoiceReceivedMessage.model_validate(data)
                self._handle_voice(voice_msg)

            elif msg_type == "error":
                error_msg = ErrorMessage.model_validate(data)
                logger.error(f"Server error [{error_msg.code}]: {error_msg.message}")
                print(f"\n!! Error ({error_msg.stage or 'server'}): {error_msg.message}")

            else:
                logger.warning(f"Unknown message type: {msg_type}")

        except (json.JSONDecodeError, ValidationError) as e:
            logger.error(f"Failed to handle message: {e}")

    def _handle_voice(self, message: VoiceReceivedMessage) -> None:
        audio = base64.b64decode(message.audio_base64)
        self.received += 1

        print(
            f"\n<< Clip #{message.sequence} "
            f"{message.from_language} -> {message.to_language} ({len(audio)} bytes)"
        )
        if message.text:
            print(f"   heard:      {message.text}")
        if message.translated_text:
            print(f"   translated: {message.translated_text}")

        if self.output_dir is not None:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            path = self.output_dir / (
                f"received-{self.received:03d}.{guess_audio_extension(audio)}"
            )
            path.write_bytes(audio)
            logger.debug(f"Saved clip to {path}")

    async def receive_messages(self, websocket: ClientConnection) -> None:
        try:
            async for message in websocket:
                if isinstance(message, bytes):
                    message = message.decode("utf-8")
                self.handle_message(message)
        except websockets.exceptions.ConnectionClosed:
            logger.info("Connection closed by server")
        finally:
            self.running = False

    async def input_loop(self, websocket: ClientConnection) -> None:
        """Handle user commands from stdin.

        Args:
            websocket: WebSocket connection
        """
        print("\nCommands:")
        print("  /send PATH - Send an audio file to the other device")
        print("  /leave     - Leave the session")
        print("  /join      - Join the session again")
        print("  /quit      - Exit client\n")

        loop = asyncio.get_running_loop()

        while self.running:
            try:
                text = (await loop.run_in_executor(None, input, "")).strip()
            except EOFError:
                self.running = False
                break

            if not text:
                continue

            command, _, argument = text.partition(" ")
            if command == "/quit":
                self.running = False
                break
            elif command == "/send" and argument:
                path = Path(argument).expanduser()
                if not path.is_file():
                    print(f"No such file: {path}")
                    continue
                await self.send_audio(websocket, path)
            elif command == "/leave":
                await self.leave(websocket)
            elif command == "/join":
                await self.join(websocket)
            else:
                print(f"Unknown command: {text}")

    async def send_files(
        self, websocket: ClientConnection, paths: list[Path], wait_s: float
    ) -> None:
        """Send files once the peer has joined, then linger for replies."""
        try:
            await asyncio.wait_for(self.connected.wait(), timeout=wait_s)
        except TimeoutError:
            print(f"\nNo peer joined within {wait_s:.0f}s")
            return

        for path in paths:
            await self.send_audio(websocket, path)

        await asyncio.sleep(wait_s)

    async def run(self, audio_files: list[Path] | None = None, wait_s: float = 30.0) -> None:
        """Run the CLI client.

        Args:
            audio_files: Files to send non-interactively (interactive if empty)
            wait_s: Seconds to wait for a peer, and for replies after sending
        """
        async with connect(self.server_url) as websocket:
            logger.info(f"Connected to {self.server_url}")
            await self.join(websocket)

            receiver = asyncio.create_task(self.receive_messages(websocket))
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, receiver.cancel)

            try:
                if audio_files:
                    await self.send_files(websocket, audio_files, wait_s)
                else:
                    await self.input_loop(websocket)
            finally:
                for sig in (signal.SIGINT, signal.SIGTERM):
                    loop.remove_signal_handler(sig)
                receiver.cancel()
                await asyncio.gather(receiver, return_exceptions=True)


def main() -> None:
    """Main entry point for CLI client."""
    parser = argparse.ArgumentParser(description="WebSocket CLI client for the voice relay")
    parser.add_argument(
        "--url",
        type=str,
        default="ws://localhost:3000",
        help="WebSocket server URL (default: ws://localhost:3000)",
    )
    parser.add_argument("--session", required=True, help="Session key shared by both devices")
    parser.add_argument(
        "--language",
        default="auto",
        help="Language this device speaks, e.g. en-US (default: auto)",
    )
    parser.add_argument(
        "--audio",
        type=Path,
        action="append",
        default=[],
        help="Audio file to send once the peer joins (repeatable)",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("received"),
        help="Directory for received clips (default: ./received)",
    )
    parser.add_argument(
        "--wait",
        type=float,
        default=30.0,
        help="Seconds to wait for a peer and for replies (default: 30)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()

    for path in args.audio:
        if not path.is_file():
            parser.error(f"audio file not found: {path}")

    client = CLIClient(
        server_url=args.url,
        session_key=args.session,
        language=args.language,
        output_dir=args.output_dir,
        verbose=args.verbose,
    )

    try:
        asyncio.run(client.run(args.audio, wait_s=args.wait))
    except KeyboardInterrupt:
        print("\nExiting...")
    except (OSError, websockets.exceptions.WebSocketException) as e:
        logger.error(f"Client error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
