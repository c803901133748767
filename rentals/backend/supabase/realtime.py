"""
Real-time message-insert feed over Postgres LISTEN/NOTIFY.

The database publishes every inserted message row on a NOTIFY channel:

    create or replace function public.notify_message_insert() returns trigger
    language plpgsql as $$
    begin
      perform pg_notify('messages_insert', row_to_json(new)::text);
      return new;
    end $$;

    create trigger messages_notify_insert after insert on public.messages
      for each row execute function public.notify_message_insert();

One listener connection is held while at least one subscription is open
and is closed when the last subscription goes away.
"""

import asyncio
from contextlib import suppress

import psycopg
from psycopg import sql
from pydantic import ValidationError

from rentals.backend.events import EventHub, Subscription
from rentals.config import settings
from rentals.infrastructure.observability.logging import get_logger
from rentals.models.domain.events import MessageInserted
from rentals.models.domain.messaging_domain import Message

logger = get_logger(__name__)


def parse_notification(payload: str) -> MessageInserted | None:
    try:
        return MessageInserted(message=Message.model_validate_json(payload))
    except ValidationError as e:
        logger.warning("Ignoring malformed message notification", error=str(e))
        return None


class PostgresMessageFeed:
    def __init__(self, conninfo: str | None = None, channel: str | None = None):
        self._conninfo = conninfo or settings.SUPABASE_DB_URL
        self._channel = channel or settings.REALTIME_CHANNEL
        self._events: EventHub[MessageInserted] = EventHub("messages", on_empty=self._stop)
        self._task: asyncio.Task | None = None
        self._stopping: set[asyncio.Task] = set()

    @property
    def listening(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self) -> Subscription[MessageInserted]:
        subscription = self._events.subscribe()
        if self._conninfo and not self.listening:
            self._task = asyncio.create_task(self._listen(), name=f"listen:{self._channel}")
        elif not self._conninfo:
            logger.warning("SUPABASE_DB_URL not set, real-time messages disabled")
        return subscription

    async def _listen(self) -> None:
        try:
            async with await psycopg.AsyncConnection.connect(
                self._conninfo, autocommit=True
            ) as conn:
                await conn.execute(sql.SQL("LISTEN {}").format(sql.Identifier(self._channel)))
                logger.info("Listening for message inserts", channel=self._channel)

                async for notify in conn.notifies():
                    event = parse_notification(notify.payload)
                    if event is not None:
                        self._events.publish(event)
        except psycopg.Error as e:
            # TODO: surface a reconnecting state and re-LISTEN after a dropped connection
            logger.error("Real-time listener stopped", channel=self._channel, error=str(e))

    def _stop(self) -> None:
        task = self._task
        # A cancelled listener stays pending until its connection closes;
        # the next subscriber must get a new one.
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            self._stopping.add(task)
            task.add_done_callback(self._stopping.discard)
            logger.info("Stopped listening for message inserts", channel=self._channel)

    async def close(self) -> None:
        self._events.close_all()
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            self._stopping.add(task)

        for pending in list(self._stopping):
            with suppress(asyncio.CancelledError):
                await pending
        self._stopping.clear()
