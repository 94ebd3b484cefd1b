import asyncio

from payzed.core.polling import StatusPoller, status_value

KEEP = frozenset({"pending", "active"})


def feed(*snapshots):
    """fetch() replaying snapshots; the last one repeats."""
    remaining = list(snapshots)

    async def fetch():
        item = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        if isinstance(item, Exception):
            raise item
        return item
    return fetch


async def collect(poller, limit=20):
    seen = []
    async for snapshot in poller:
        seen.append(snapshot)
        if len(seen) >= limit:
            poller.cancel()
    return seen


async def test_yields_only_changes_and_stops_outside_polled_set():
    poller = StatusPoller(
        feed({"status": "pending"}, {"status": "pending"}, {"status": "active"}, {"status": "cancelled_by_payer"}),
        interval=0,
        keep_polling=KEEP,
    )
    seen = await collect(poller)

    assert [status_value(s) for s in seen] == ["pending", "active", "cancelled_by_payer"]
    assert poller.ticks == 4


async def test_fetch_errors_are_skipped():
    poller = StatusPoller(
        feed({"status": "pending"}, RuntimeError("db timeout"), {"status": "paid"}),
        interval=0,
        keep_polling=frozenset({"pending"}),
    )
    seen = await collect(poller)

    assert [s["status"] for s in seen] == ["pending", "paid"]


async def test_missing_record_ends_polling():
    poller = StatusPoller(feed({"status": "pending"}, None), interval=0, keep_polling=KEEP)
    assert len(await collect(poller)) == 1


async def test_cancel_stops_a_running_poller():
    poller = StatusPoller(feed({"status": "active"}), interval=10, keep_polling=KEEP)

    async def cancel_soon():
        await asyncio.sleep(0.05)
        poller.cancel()

    canceller = asyncio.create_task(cancel_soon())
    seen = await asyncio.wait_for(collect(poller), timeout=2)
    await canceller

    assert len(seen) == 1
    assert poller.cancelled


async def test_wake_triggers_immediate_refetch():
    wake = asyncio.Queue()
    poller = StatusPoller(
        feed({"status": "pending"}, {"status": "active"}),
        interval=10,
        keep_polling=frozenset({"pending"}),
        wake=wake,
    )
    await wake.put({"type": "payment_recorded"})

    seen = await asyncio.wait_for(collect(poller), timeout=2)
    assert [s["status"] for s in seen] == ["pending", "active"]


async def test_custom_fingerprint_reports_payment_count_changes():
    poller = StatusPoller(
        feed(
            {"status": "active", "total_payments": 1},
            {"status": "active", "total_payments": 2},
            {"status": "cancelled_by_creator", "total_payments": 2},
        ),
        interval=0,
        keep_polling=KEEP,
        fingerprint=lambda s: (s["status"], s["total_payments"]),
    )
    seen = await collect(poller)
    assert [s["total_payments"] for s in seen] == [1, 2, 2]
