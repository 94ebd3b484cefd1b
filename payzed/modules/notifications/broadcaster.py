import asyncio
import logging
from typing import Dict, Set

logger = logging.getLogger(__name__)

class PaymentBroadcaster:
    def __init__(self):
        # Map resource key ("subscription:<id>", "invoice:<id>") -> connected queues
        # Several tabs may watch the same resource
        self.connections: Dict[str, Set[asyncio.Queue]] = {}
        self.lock = asyncio.Lock()

    async def connect(self, key: str) -> asyncio.Queue:
        """
        Create a new queue for a stream watching ``key``.
        """
        async with self.lock:
            if key not in self.connections:
                self.connections[key] = set()

            queue = asyncio.Queue()
            self.connections[key].add(queue)
            logger.info(f"[Broadcaster] Stream on {key} connected. Total connections: {len(self.connections[key])}")
            return queue

    async def disconnect(self, key: str, queue: asyncio.Queue):
        async with self.lock:
            if key in self.connections:
                self.connections[key].discard(queue)
                if not self.connections[key]:
                    del self.connections[key]
                logger.info(f"[Broadcaster] Stream on {key} disconnected.")

    async def broadcast(self, key: str, message: dict) -> int:
        """
        Push a message to every stream watching ``key``. Returns how many got it.
        """
        async with self.lock:
            queues = self.connections.get(key)
            if not queues:
                return 0

            logger.info(f"[Broadcaster] Pushing {message.get('type')} to {key} ({len(queues)} queues)")
            for q in queues:
                await q.put(message)
            return len(queues)

def subscription_key(subscription_id) -> str:
    return f"subscription:{subscription_id}"

def invoice_key(invoice_id) -> str:
    return f"invoice:{invoice_id}"
