import asyncio
import json
from datetime import datetime
from typing import Optional

import requests
import websockets
from rich.console import Console
from rich.panel import Panel


class Client:
    def __init__(
        self, server: str, port: int, username: str, password: Optional[str] = None
    ):
        self.server = server
        self.port = port
        self.username = username
        self.password = password or ""
        self.token: Optional[str] = None

        self.console = Console()
        self.messages: list[dict] = []
        self.presence: dict[str, dict] = {}
        self.typing: set[str] = set()
        self.connected = False
        self.running = False

    @property
    def base_url(self) -> str:
        return f"http://{self.server}:{self.port}"

    @property
    def ws_url(self) -> str:
        return f"ws://{self.server}:{self.port}"

    @property
    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓ {message}[/]")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗ {message}[/]")

    def info(self, message: str) -> None:
        self.console.print(f"[cyan]• {message}[/]")

    def login(self) -> None:
        with self.console.status("[cyan]Logging in...[/]", spinner="dots"):
            resp = requests.post(
                f"{self.base_url}/login",
                json={"username": self.username, "password": self.password},
                timeout=30,
            )
            resp.raise_for_status()
            self.token = resp.json()["token"]

        self.success(f"Logged in as {self.username}")

    def logout(self) -> None:
        if not self.token:
            return
        try:
            requests.post(f"{self.base_url}/logout", json={"token": self.token}, timeout=10)
        except requests.exceptions.RequestException as e:
            self.error(f"Logout failed: {e}")
        self.token = None

    def load_history(self) -> None:
        resp = requests.get(f"{self.base_url}/messages", headers=self.auth_headers, timeout=30)
        resp.raise_for_status()
        self.messages = resp.json()

    def clear_chat(self) -> None:
        resp = requests.post(
            f"{self.base_url}/clear-chat", headers=self.auth_headers, timeout=30
        )
        resp.raise_for_status()

    @staticmethod
    def format_time(timestamp: Optional[int]) -> str:
        if timestamp is None:
            return ""
        return datetime.fromtimestamp(timestamp / 1000).strftime("%Y-%m-%d %H:%M:%S")

    def status_line(self) -> str:
        parts = []
        for name, status in sorted(self.presence.items()):
            if name == self.username:
                continue
            if status.get("isOnline"):
                parts.append(f"[green]{name}[/] online")
            else:
                parts.append(f"{name} last seen {self.format_time(status.get('lastSeen'))}")
        return ", ".join(parts) or "nobody else around"

    def render_messages(self) -> None:
        self.console.clear()

        self.console.print(f"[dim]{self.status_line()}[/]")
        self.console.print("─" * 60)

        display_messages = self.messages[-15:]

        for msg in display_messages:
            sender = msg.get("sender", "unknown")
            content = msg.get("content", "")
            timestamp = self.format_time(msg.get("timestamp"))

            style = "green" if sender == self.username else "cyan"
            self.console.print(f"[dim]{timestamp}[/] [{style}]{sender}[/]: {content}")

        if not display_messages:
            self.console.print("[dim italic]No messages yet...[/]")

        if self.typing:
            self.console.print(f"[dim italic]{', '.join(sorted(self.typing))} typing...[/]")

        self.console.print("─" * 60)
        self.console.print("[dim]Type message and press Enter. '/clear' to wipe, 'q' to quit.[/]")

    def handle_event(self, event: str, data) -> None:
        match event:
            case "online_users":
                for status in data or []:
                    self.presence[status["username"]] = status
                self.connected = True
            case "user_status":
                self.presence[data["username"]] = data
                if not data.get("isOnline"):
                    self.typing.discard(data["username"])
            case "new_message":
                self.messages.append(data)
                self.typing.discard(data.get("sender"))
            case "user_typing":
                if data.get("isTyping"):
                    self.typing.add(data["username"])
                else:
                    self.typing.discard(data["username"])
            case "chat_cleared":
                self.messages = []
            case "auth_failed":
                self.error(f"Authentication failed: {(data or {}).get('error')}")
                self.running = False
                return
            case _:
                return
        self.render_messages()

    async def receive_loop(self, ws) -> None:
        try:
            async for raw in ws:
                if not self.running:
                    break

                frame = json.loads(raw)
                self.handle_event(frame.get("event", ""), frame.get("data"))
                if not self.running:
                    break

        except websockets.ConnectionClosed:
            self.connected = False

    async def emit(self, ws, event: str, data=None) -> None:
        await ws.send(json.dumps({"event": event, "data": data}))

    async def input_loop(self, ws) -> None:
        while self.running:
            try:
                text = await asyncio.to_thread(input)
                if text.lower() in ("q", "quit", "exit"):
                    self.running = False
                    break
                if text.strip() == "/clear":
                    await asyncio.to_thread(self.clear_chat)
                elif text.strip():
                    await self.emit(ws, "send_message", {"content": text})
            except (EOFError, KeyboardInterrupt):
                self.running = False
                break

    async def run_async(self) -> None:
        self.console.clear()
        self.console.print(Panel("[bold cyan]Duo Chat Client[/]", expand=False))
        self.console.print()

        try:
            self.login()
            self.load_history()

            self.info("Connecting to chat...")
            async with websockets.connect(f"{self.ws_url}/ws/chat") as ws:
                self.running = True
                await self.emit(ws, "authenticate", self.token)
                self.success("Connected to chat server")
                self.render_messages()

                receive_task = asyncio.create_task(self.receive_loop(ws))
                input_task = asyncio.create_task(self.input_loop(ws))

                done, pending = await asyncio.wait(
                    [receive_task, input_task], return_when=asyncio.FIRST_COMPLETED
                )

                for task in pending:
                    task.cancel()

            self.console.print("\n[yellow]Disconnected[/]")

        except requests.exceptions.ConnectionError:
            self.error(f"Cannot connect to {self.base_url}")
        except requests.exceptions.HTTPError as e:
            self.error(f"Server error: {e.response.status_code} - {e.response.text}")
        finally:
            self.logout()

    def run(self) -> None:
        asyncio.run(self.run_async())
