"""Routes "session needs you" notifications to desktop and Telegram."""

import asyncio
import logging
import shutil
import subprocess
from typing import Iterable, List, Optional

from telegram import Bot

from .models import NotificationEvent, SessionRecord

logger = logging.getLogger(__name__)

NOTIFICATION_TITLE = "Claude Ready"


def _applescript_quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


class DesktopChannel:
    """Native desktop notifications (osascript on macOS, notify-send elsewhere)."""

    name = "desktop"

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    def _command(self, event: NotificationEvent) -> Optional[list[str]]:
        if shutil.which("osascript"):
            script = (
                f"display notification {_applescript_quote(event.message)} "
                f"with title {_applescript_quote(event.title)} sound name \"default\""
            )
            return ["osascript", "-e", script]
        if shutil.which("notify-send"):
            return ["notify-send", event.title, event.message]
        return None

    def _send_sync(self, event: NotificationEvent) -> bool:
        cmd = self._command(event)
        if cmd is None:
            logger.warning("No desktop notifier available (osascript / notify-send)")
            return False
        try:
            subprocess.run(cmd, check=True, capture_output=True, text=True, timeout=self.timeout)
            return True
        except subprocess.CalledProcessError as e:
            logger.error(f"Desktop notification failed: {e.stderr}")
            return False
        except subprocess.TimeoutExpired:
            logger.error(f"Desktop notification timed out after {self.timeout}s")
            return False

    async def send(self, event: NotificationEvent) -> bool:
        return await asyncio.to_thread(self._send_sync, event)


class TelegramChannel:
    """Sends notifications to one Telegram chat."""

    name = "telegram"

    def __init__(self, token: str, chat_id: int, bot: Optional[Bot] = None):
        self.token = token
        self.chat_id = chat_id
        self.bot = bot

    async def start(self):
        """Initialize the bot."""
        if self.bot is None:
            self.bot = Bot(token=self.token)
        await self.bot.initialize()
        logger.info("Telegram channel started")

    async def stop(self):
        if self.bot:
            await self.bot.shutdown()
            logger.info("Telegram channel stopped")

    async def send(self, event: NotificationEvent) -> bool:
        if not self.bot:
            logger.error("Bot not initialized")
            return False
        text = f"{event.title}\n{event.message}"
        if event.project_path:
            text += f"\n{event.project_path}"
        await self.bot.send_message(chat_id=self.chat_id, text=text)
        return True


class Notifier:
    """Fires notifications for sessions that just started waiting."""

    def __init__(self, channels: Optional[Iterable] = None, title: str = NOTIFICATION_TITLE):
        self.channels = list(channels or [])
        self.title = title
        self._pending: set[asyncio.Task] = set()

    def build_event(self, record: SessionRecord) -> NotificationEvent:
        """Format a session record as a notification event."""
        return NotificationEvent(
            session_id=record.session_id,
            display_name=record.display_name,
            project_path=record.project_path,
            title=self.title,
            message=f"{record.display_name} is waiting for input",
        )

    async def notify(self, event: NotificationEvent) -> bool:
        """
        Deliver an event to every channel.

        Failures are logged and never retried.

        Args:
            event: The notification event

        Returns:
            True if at least one channel delivered it
        """
        if not self.channels:
            logger.info(f"Notification (no channels): {event.message}")
            return False

        success = False
        for channel in self.channels:
            try:
                if await channel.send(event):
                    success = True
            except Exception as e:
                logger.error(f"Notification via {channel.name} failed for {event.session_id}: {e}")
        return success

    def dispatch(self, records: Iterable[SessionRecord]) -> List[asyncio.Task]:
        """Fire-and-forget one notification per record."""
        tasks = []
        for record in records:
            event = self.build_event(record)
            logger.info(f"Session {record.session_id} ({record.display_name}) needs attention")
            task = asyncio.create_task(self.notify(event))
            # Keep a reference so the task isn't garbage collected mid-flight
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            tasks.append(task)
        return tasks

    async def start(self):
        for channel in self.channels:
            start = getattr(channel, "start", None)
            if start:
                await start()

    async def stop(self):
        for channel in self.channels:
            stop = getattr(channel, "stop", None)
            if stop:
                try:
                    await stop()
                except Exception as e:
                    logger.warning(f"Error stopping {channel.name} channel: {e}")
