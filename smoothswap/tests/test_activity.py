from smoothswap.runner.activity import ActivityLog
from smoothswap.strategy.models import ActivityLogEntry


def _entry(i):
    return ActivityLogEntry(
        type="sell", amount="1.000000", timestamp=str(i), price=1.0, dex="falcoxswap", token_symbol="T"
    )


def test_newest_first_and_bounded():
    log = ActivityLog(limit=3)
    for i in range(5):
        log.append(_entry(i))

    assert [e.timestamp for e in log.entries()] == ["4", "3", "2"]
    assert len(log) == 3


def test_sink_failure_does_not_lose_the_entry():
    def broken(_entry):
        raise OSError("disk full")

    log = ActivityLog(limit=5, sink=broken)
    log.append(_entry(1))
    assert len(log) == 1


def test_preload_keeps_order_without_sinking():
    seen = []
    log = ActivityLog(limit=2, sink=seen.append)
    log.preload([_entry(9), _entry(8), _entry(7)])

    assert [e.timestamp for e in log.entries()] == ["9", "8"]
    assert seen == []
