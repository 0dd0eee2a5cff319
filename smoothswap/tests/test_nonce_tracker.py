import threading

from smoothswap.chain.nonce import NonceTracker

ADDR = "0xAbC0000000000000000000000000000000000001"


def test_successive_sends_never_share_a_nonce_when_chain_lags():
    t = NonceTracker()
    lagging = lambda _addr: 7  # node has not seen our pending txs yet

    assert t.next_nonce(ADDR, lagging) == 7
    assert t.next_nonce(ADDR, lagging) == 8
    assert t.next_nonce(ADDR, lagging) == 9


def test_chain_ahead_of_cache_wins():
    t = NonceTracker()
    assert t.next_nonce(ADDR, lambda _a: 3) == 3
    assert t.next_nonce(ADDR, lambda _a: 10) == 10
    assert t.peek(ADDR) == 11


def test_reset_rereads_chain():
    t = NonceTracker()
    t.next_nonce(ADDR, lambda _a: 5)
    t.next_nonce(ADDR, lambda _a: 5)
    t.reset(ADDR)
    assert t.next_nonce(ADDR, lambda _a: 5) == 5


def test_wallets_are_independent_and_case_insensitive():
    t = NonceTracker()
    other = "0x0000000000000000000000000000000000000002"
    assert t.next_nonce(ADDR, lambda _a: 0) == 0
    assert t.next_nonce(ADDR.lower(), lambda _a: 0) == 1
    assert t.next_nonce(other, lambda _a: 0) == 0


def test_concurrent_callers_get_unique_nonces():
    t = NonceTracker()
    got = []
    lock = threading.Lock()

    def worker():
        n = t.next_nonce(ADDR, lambda _a: 0)
        with lock:
            got.append(n)

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for th in threads:
        th.start()
    for th in threads:
        th.join()

    assert sorted(got) == list(range(20))
