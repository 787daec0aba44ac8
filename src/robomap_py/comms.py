import asyncio
import json
import logging
import queue
import signal
import threading
from threading import Thread
from typing import Any, Callable

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

logger = logging.getLogger(__name__)


class Subscription:
    """Delivery channel for one named data stream.

    The receive loop pushes decoded messages in and the drain task hands them
    to the callback on a worker thread. When the queue is full the oldest message
    is dropped so a stalled consumer never blocks reception.
    """

    def __init__(
        self,
        data_name: str,
        callback: Callable[[dict], None],
        freq: int = -1,
        maxsize: int = 1000,
    ):
        self.data_name = data_name
        self.callback = callback
        self.freq = freq
        self.queue: queue.Queue = queue.Queue(maxsize)
        self.dropped: int = 0
        self.active: bool = True

    def push(self, message: dict) -> bool:
        if not self.active:
            return False

        while True:
            try:
                self.queue.put_nowait(message)
                return True
            except queue.Full:
                try:
                    self.queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def drain(self) -> int:
        delivered = 0
        while self.active:
            try:
                message = self.queue.get_nowait()
            except queue.Empty:
                break
            self.callback(message)
            delivered += 1

        return delivered

    def cancel(self) -> None:
        self.active = False


class RobotClient:
    """Websocket connection to one robot.

    Inbound JSON objects are routed by their ``type`` field to the matching
    ``Subscription``; a separate drain task delivers them to the callbacks on
    a worker thread. Outbound messages go through a bounded queue so that
    ``send`` never blocks the caller.
    """

    def __init__(
        self,
        host: str = "robot0",
        url: str = "localhost",
        port: int = 9000,
        outbox_size: int = 1000,
    ):
        self.host = host
        self.uri = f"ws://{url}:{port}"

        self.outbox: queue.Queue = queue.Queue(outbox_size)

        self._subscriptions: dict[str, Subscription] = {}
        self._lock = threading.Lock()

        self._timer_callbacks = []
        self.stop_event = threading.Event()
        self.run_thread: Thread | None = None

        logger.info(f"Initialised client for {self.host} at {self.uri}")

    # Subscriptions

    def subscribe(
        self, data_name: str, callback: Callable[[dict], None], freq: int = -1
    ) -> Subscription:
        with self._lock:
            existing = self._subscriptions.get(data_name)
            if existing is not None and existing.active:
                return existing

            subscription = Subscription(data_name, callback, freq)
            self._subscriptions[data_name] = subscription

        try:
            self.send({"cmd": "request", "name": data_name, "freq": freq})
        except queue.Full:
            logger.error(f"Outbox full, could not request '{data_name}' from {self.host}")

        logger.info(f"Subscribed to '{data_name}' on {self.host} (freq={freq})")
        return subscription

    def unsubscribe(self, data_name: str) -> None:
        with self._lock:
            subscription = self._subscriptions.pop(data_name, None)

        if subscription is not None:
            subscription.cancel()

    def subscriptions(self) -> dict[str, Subscription]:
        with self._lock:
            return dict(self._subscriptions)

    def route(self, message: Any) -> bool:
        """Queues one decoded message on its subscription without running the callback."""
        if not isinstance(message, dict) or "type" not in message:
            logger.warning(f"Dropping untyped message from {self.host}")
            return False

        with self._lock:
            subscription = self._subscriptions.get(message["type"])

        if subscription is None:
            logger.warning(f"Unknown message type '{message['type']}' from {self.host}")
            return False

        return subscription.push(message)

    def drain_all(self) -> int:
        return sum(s.drain() for s in self.subscriptions().values())

    def dispatch(self, message: Any) -> int:
        """Routes one message and delivers everything queued. Returns messages delivered."""
        if not self.route(message):
            return 0
        return self.drain_all()

    # Outbound

    def send(self, message: dict) -> None:
        """Queues a message for the robot. Raises queue.Full instead of blocking."""
        self.outbox.put_nowait(message)

    # Event loop

    async def ws_recv(self, websocket):
        while not self.stop_event.is_set():
            try:
                raw = await asyncio.wait_for(websocket.recv(), timeout=1)
            except asyncio.TimeoutError:
                continue

            try:
                message = json.loads(raw)
            except json.JSONDecodeError as e:
                logger.warning(f"Undecodable message from {self.host}: {e}")
                continue

            self.route(message)

    async def ws_drain(self):
        # Callbacks run on a worker thread so handler work never blocks reception
        while not self.stop_event.is_set():
            try:
                delivered = await asyncio.to_thread(self.drain_all)
            except Exception:
                logger.exception(f"Error handling message from {self.host}")
                continue

            if delivered == 0:
                await asyncio.sleep(0.005)

    async def ws_send(self, websocket):
        while not self.stop_event.is_set():
            try:
                message = self.outbox.get_nowait()
            except queue.Empty:
                await asyncio.sleep(0.005)
                continue

            await websocket.send(json.dumps(message))

    async def ws_client(self):
        try:
            async with connect(self.uri) as websocket:
                logger.info(f"Connected to {self.uri}")

                tasks = [
                    asyncio.create_task(self.ws_recv(websocket)),
                    asyncio.create_task(self.ws_send(websocket)),
                ]
                try:
                    await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    for task in tasks:
                        task.cancel()
                    results = await asyncio.gather(*tasks, return_exceptions=True)

                for result in results:
                    if isinstance(result, Exception):
                        logger.error(f"Connection to {self.uri} failed: {result!r}")

        except ConnectionClosed as e:
            logger.error(f"Connection to {self.uri} closed: {e}")
        except OSError as e:
            logger.error(f"Could not connect to {self.uri}: {e}")

    def create_timer(self, frequency: float, target_fn: Callable):
        async def callback_fn():
            while not self.stop_event.is_set():
                await asyncio.to_thread(target_fn)
                await asyncio.sleep(1 / frequency)

        self._timer_callbacks.append(callback_fn)

    async def main(self):
        all_tasks = [
            asyncio.create_task(self.ws_client()),
            asyncio.create_task(self.ws_drain()),
        ]
        all_tasks += [asyncio.create_task(t()) for t in self._timer_callbacks]

        try:
            await asyncio.wait(all_tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in all_tasks:
                task.cancel()
            await asyncio.gather(*all_tasks, return_exceptions=True)

    def run(self):
        self.stop_event.clear()
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

        if threading.current_thread() is threading.main_thread():
            loop.add_signal_handler(signal.SIGINT, self.stop)
            loop.add_signal_handler(signal.SIGTERM, self.stop)

        try:
            loop.run_until_complete(self.main())
        finally:
            loop.close()
            logger.info(f"Event loop for {self.host} closed")

    def run_in_separate_thread(self):
        self.run_thread = Thread(
            target=self.run, daemon=True, name=f"{self.host}_transport"
        )
        self.run_thread.start()

    def stop(self):
        self.stop_event.set()
