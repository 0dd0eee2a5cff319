from smoothswap.execution.confirm import receipt_ok, wait_for_receipt


class _FakeClient:
    def __init__(self, receipts):
        self._receipts = list(receipts)
        self.polls = 0

    def get_receipt(self, tx_hash):
        self.polls += 1
        return self._receipts.pop(0) if self._receipts else None


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, s):
        self.now += s


def test_returns_receipt_once_mined():
    clock = _Clock()
    client = _FakeClient([None, None, {"status": 1}])

    r = wait_for_receipt(client, "0xabc", timeout_s=10, poll_s=1, sleep=clock.sleep, clock=clock)

    assert r == {"status": 1}
    assert client.polls == 3
    assert clock.now == 2.0


def test_times_out_with_none():
    clock = _Clock()
    client = _FakeClient([])

    r = wait_for_receipt(client, "0xabc", timeout_s=5, poll_s=1, sleep=clock.sleep, clock=clock)

    assert r is None
    assert clock.now == 5.0


def test_receipt_ok_requires_status_one():
    assert receipt_ok({"status": 1})
    assert not receipt_ok({"status": 0})
    assert not receipt_ok({})
    assert not receipt_ok(None)
