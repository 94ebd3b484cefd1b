import asyncio
import logging

from payzed.modules.invoices.service import settle_invoice_receipt
from payzed.modules.notifications.broadcaster import invoice_key
from payzed.modules.tokens.service import default_spender

logger = logging.getLogger(__name__)

class Worker:
    """
    Receipt-path reconciliation. The API enqueues a job as soon as the
    front end reports a transaction hash; the job waits for the receipt
    off the request path.

    Each job runs in its own task, at most ``concurrency`` at a time, so a
    hash that never gets mined only holds up its own slot.
    """

    def __init__(self, database, chain, reconciler, broadcaster, receipt_timeout: float = 120, concurrency: int = 8):
        self.database = database
        self.chain = chain
        self.reconciler = reconciler
        self.broadcaster = broadcaster
        self.receipt_timeout = receipt_timeout
        self.queue: asyncio.Queue = asyncio.Queue()
        self.is_running = False
        self._task = None
        self._slots = asyncio.Semaphore(concurrency)
        self._jobs = set()

    @property
    def active_jobs(self) -> int:
        return len(self._jobs)

    async def start(self):
        """Starts the worker loop."""
        if self.is_running:
            return
        self.is_running = True
        self._task = asyncio.create_task(self._process_queue())
        logger.info("[Worker] Started.")

    async def stop(self):
        """Stops the worker loop and cancels jobs still waiting on a receipt."""
        self.is_running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        jobs = list(self._jobs)
        for job in jobs:
            job.cancel()
        if jobs:
            await asyncio.gather(*jobs, return_exceptions=True)
        logger.info("[Worker] Stopped.")

    async def enqueue_job(self, task_name: str, **kwargs):
        """Adds a job to the queue."""
        logger.info(f"[Worker] Enqueuing job: {task_name} | Args: {kwargs}")
        await self.queue.put((task_name, kwargs))

    async def run_job(self, task_name: str, **kwargs):
        if task_name == "reconcile_subscription_receipt":
            await self.reconciler.handle_receipt(
                kwargs["subscription_id_bytes32"],
                kwargs["transaction_hash"],
                kwargs["payer"],
            )
        elif task_name == "reconcile_invoice_receipt":
            invoice = await settle_invoice_receipt(
                self.database,
                self.chain,
                kwargs["invoice_id"],
                kwargs["transaction_hash"],
                kwargs["payer"],
                default_spender(),
                timeout=self.receipt_timeout,
            )
            if invoice is not None:
                await self.broadcaster.broadcast(
                    invoice_key(invoice.id),
                    {"type": "invoice_paid", "invoice_id": str(invoice.id), "transaction_hash": invoice.transaction_hash},
                )
        else:
            logger.warning(f"[Worker] Unknown job: {task_name}")

    async def _run_tracked(self, task_name: str, kwargs: dict):
        try:
            await self.run_job(task_name, **kwargs)
        except asyncio.CancelledError:
            logger.info(f"[Worker] Cancelled: {task_name} {kwargs.get('transaction_hash')}")
            raise
        except Exception as e:
            logger.error(f"[Worker] Job Failed: {e}", exc_info=True)
        finally:
            self._slots.release()
            self.queue.task_done()

    async def _process_queue(self):
        """Main loop handing jobs to their own tasks."""
        while self.is_running:
            try:
                task_name, kwargs = await self.queue.get()
                await self._slots.acquire()

                logger.info(f"[Worker] Processing: {task_name}")
                job = asyncio.create_task(self._run_tracked(task_name, kwargs))
                self._jobs.add(job)
                job.add_done_callback(self._jobs.discard)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[Worker] Loop Error: {e}")
                await asyncio.sleep(1)
