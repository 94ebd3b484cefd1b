import asyncio

from conftest import PAYER, tx
from payzed.modules.worker.runner import Worker


class StallingReconciler:
    """Never sees a receipt for tx(1); every other hash confirms at once."""

    def __init__(self):
        self.handled = []
        self.unblock = asyncio.Event()

    async def handle_receipt(self, subscription_id_bytes32, transaction_hash, payer):
        if transaction_hash == tx(1):
            await self.unblock.wait()
        self.handled.append(transaction_hash)


async def _enqueue(worker, n):
    await worker.enqueue_job(
        "reconcile_subscription_receipt",
        subscription_id_bytes32="0x" + "ab" * 32,
        transaction_hash=tx(n),
        payer=PAYER,
    )


async def _wait_until(predicate, timeout=2):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(_poll(), timeout)


async def test_stalled_receipt_does_not_block_later_jobs():
    reconciler = StallingReconciler()
    worker = Worker(None, None, reconciler, None, concurrency=4)
    await worker.start()

    await _enqueue(worker, 1)
    await _enqueue(worker, 2)
    await _wait_until(lambda: reconciler.handled == [tx(2)] and worker.active_jobs == 1)

    reconciler.unblock.set()
    await asyncio.wait_for(worker.queue.join(), 2)
    assert reconciler.handled == [tx(2), tx(1)]
    await worker.stop()


async def test_concurrency_is_bounded():
    reconciler = StallingReconciler()
    worker = Worker(None, None, reconciler, None, concurrency=1)
    await worker.start()

    await _enqueue(worker, 1)
    await _enqueue(worker, 2)
    await asyncio.sleep(0.05)
    assert reconciler.handled == []

    reconciler.unblock.set()
    await asyncio.wait_for(worker.queue.join(), 2)
    assert reconciler.handled == [tx(1), tx(2)]
    await worker.stop()


async def test_stop_cancels_jobs_still_waiting():
    reconciler = StallingReconciler()
    worker = Worker(None, None, reconciler, None)
    await worker.start()

    await _enqueue(worker, 1)
    await _wait_until(lambda: worker.active_jobs == 1)
    await asyncio.wait_for(worker.stop(), 2)

    assert worker.active_jobs == 0
    assert reconciler.handled == []
