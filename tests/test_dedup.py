import threading

from talkledger.dedup import DedupGuard, fingerprint


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def record(**overrides):
    data = {"date": "2025-10-15", "type": "expense", "currency": "TWD", "amount": 120.0, "note": "coffee"}
    return {**data, **overrides}


def test_fingerprint_normalizes_case_and_whitespace():
    assert fingerprint(record(note=" Coffee ", currency="twd")) == fingerprint(record())
    assert fingerprint(record(amount=120)) == "2025-10-15|expense|TWD|120|coffee"
    assert fingerprint(record(amount=121)) != fingerprint(record())


def test_second_write_inside_window_is_a_duplicate():
    guard = DedupGuard(ttl_seconds=120, clock=FakeClock())
    assert guard.seen_recently("u1", record()) is False
    assert guard.seen_recently("u1", record()) is True


def test_window_expires():
    clock = FakeClock()
    guard = DedupGuard(ttl_seconds=120, clock=clock)
    guard.seen_recently("u1", record())

    clock.now += 121

    assert guard.seen_recently("u1", record()) is False


def test_expired_entries_are_pruned_on_access():
    clock = FakeClock()
    guard = DedupGuard(ttl_seconds=10, clock=clock)
    guard.seen_recently("u1", record(note="a"))
    guard.seen_recently("u1", record(note="b"))
    assert guard.bucket_size("u1") == 2

    clock.now += 11
    guard.seen_recently("u1", record(note="c"))

    assert guard.bucket_size("u1") == 1


def test_prune_drops_empty_buckets():
    clock = FakeClock()
    guard = DedupGuard(ttl_seconds=10, clock=clock)
    guard.seen_recently("u1", record())
    clock.now += 11

    guard.prune()

    assert guard.bucket_size("u1") == 0


def test_users_are_independent():
    guard = DedupGuard(clock=FakeClock())
    assert guard.seen_recently("u1", record()) is False
    assert guard.seen_recently("u2", record()) is False


def test_forget_allows_a_retry():
    guard = DedupGuard(clock=FakeClock())
    guard.seen_recently("u1", record())
    guard.forget("u1", record())
    assert guard.seen_recently("u1", record()) is False


def test_concurrent_writers_admit_exactly_one():
    guard = DedupGuard()
    barrier = threading.Barrier(16)
    results = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        seen = guard.seen_recently("u1", record())
        with lock:
            results.append(seen)

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(False) == 1
    assert results.count(True) == 15


def test_fingerprint_keeps_every_digit():
    assert fingerprint(record(amount=1234567)) != fingerprint(record(amount=1234568))
    assert fingerprint(record(amount=123456.7)) != fingerprint(record(amount=123456.8))
    assert fingerprint(record(amount=123456.7)).split("|")[3] == "123456.7"


def test_corrected_large_amount_is_not_a_duplicate():
    guard = DedupGuard(clock=FakeClock())
    assert guard.seen_recently("u1", record(amount=1234567, type="income", note="bonus")) is False
    assert guard.seen_recently("u1", record(amount=1234568, type="income", note="bonus")) is False
