"""Tests for the idempotency guard."""

import json
import threading

import pytest

from idempotent_guard import (
    ConfigurationError,
    DelayedCleanupWorker,
    DuplicateRequestError,
    GuardSettings,
    IdempotencyGuard,
    OperationFailedError,
    SignatureInvalidError,
    StoreUnavailableError,
    bind_request,
)


@pytest.fixture
def guard(store):
    return IdempotencyGuard(store)


def test_first_call_runs_duplicate_rejected(guard, store, request_factory):
    """Test that a repeated identical request is rejected while reserved."""
    call_count = 0

    @guard.idempotent(expire_time=10, info="Order already submitted")
    def create_order(user_id, amount):
        nonlocal call_count
        call_count += 1
        return {"order_id": 123, "amount": amount}

    with bind_request(request_factory()):
        assert create_order(user_id=1, amount=100) == {"order_id": 123, "amount": 100}

        with pytest.raises(DuplicateRequestError) as exc_info:
            create_order(user_id=1, amount=100)

    assert call_count == 1
    assert exc_info.value.message == "Order already submitted"
    assert str(exc_info.value) == "Order already submitted"
    assert exc_info.value.key.startswith("idempotent:user-token:203.0.113.7:51234:")
    assert store.exists(exc_info.value.key)


def test_different_arguments_not_duplicates(guard, request_factory):
    @guard.idempotent(expire_time=10)
    def create_order(user_id, amount):
        return amount

    with bind_request(request_factory()):
        assert create_order(1, 100) == 100
        assert create_order(2, 100) == 100
        assert create_order(1, 200) == 200


def test_different_callers_not_duplicates(guard, request_factory):
    @guard.idempotent(expire_time=10)
    def create_order(user_id):
        return user_id

    with bind_request(request_factory(headers={"token": "alice"})):
        create_order(1)
    with bind_request(request_factory(headers={"Token": "bob"})):
        create_order(1)


def test_reordered_body_is_duplicate(guard, request_factory):
    """Test that body field order and case do not defeat duplicate detection."""

    @guard.idempotent(expire_time=10)
    def submit():
        return "ok"

    def json_request(body):
        return request_factory(content_type="application/json", body=json.dumps(body).encode())

    with bind_request(json_request({"A": 1, "b": 2})):
        submit()
    with bind_request(json_request({"b": 2, "a": 1})):
        with pytest.raises(DuplicateRequestError):
            submit()


def test_reservation_has_ttl(guard, store, request_factory, clock):
    """Test that reservations expire on their own when retained."""

    @guard.idempotent(expire_time=5)
    def create_order():
        return "ok"

    with bind_request(request_factory()):
        create_order()
        clock.advance(5)
        assert create_order() == "ok"

    assert store.drain_due(int(1e15)) == []


def test_time_unit(guard, store, request_factory, clock):
    @guard.idempotent(expire_time=2, time_unit="minutes")
    def create_order():
        return "ok"

    with bind_request(request_factory()):
        create_order()
        clock.advance(119)
        with pytest.raises(DuplicateRequestError):
            create_order()
        clock.advance(1)
        create_order()


def test_success_with_del_key_schedules_delete(guard, store, request_factory, clock):
    """Test that success keeps the key for the grace period, then queues it."""

    @guard.idempotent(expire_time=60, del_key=True, delay_check_seconds=3)
    def create_order():
        return "ok"

    with bind_request(request_factory()):
        create_order()
        with pytest.raises(DuplicateRequestError) as exc_info:
            create_order()

    now_ms = int(clock() * 1000)
    assert store.drain_due(now_ms + 2999) == []
    assert store.drain_due(now_ms + 3000) == [exc_info.value.key]


def test_failure_with_del_key_releases_immediately(guard, store, request_factory):
    """Test that a failed attempt does not block a legitimate retry."""
    attempts = []

    @guard.idempotent(expire_time=60, del_key=True, delay_check_seconds=3)
    def charge(amount):
        attempts.append(amount)
        if len(attempts) == 1:
            raise RuntimeError("gateway down")
        return "charged"

    with bind_request(request_factory()):
        with pytest.raises(OperationFailedError) as exc_info:
            charge(10)
        assert charge(10) == "charged"

    error = exc_info.value
    assert isinstance(error.__cause__, RuntimeError)
    assert error.error is error.__cause__
    assert "charge" in error.operation_id
    assert attempts == [10, 10]
    # Safety-net delete stays queued after the immediate one
    assert len(store.drain_due(int(1e15))) == 1


def test_failure_without_del_key_keeps_reservation(guard, store, request_factory):
    @guard.idempotent(expire_time=60)
    def charge():
        raise ValueError("declined")

    with bind_request(request_factory()):
        with pytest.raises(OperationFailedError):
            charge()
        with pytest.raises(DuplicateRequestError):
            charge()

    assert store.drain_due(int(1e15)) == []


def test_concurrent_duplicates_single_execution(guard, request_factory):
    """Test that of two overlapping identical calls only one runs."""
    entered = threading.Event()
    release = threading.Event()
    call_count = 0
    results = {}

    @guard.idempotent(expire_time=30)
    def create_order(user_id):
        nonlocal call_count
        call_count += 1
        entered.set()
        release.wait(5)
        return "created"

    def first_call():
        with bind_request(request_factory()):
            results["first"] = create_order(1)

    thread = threading.Thread(target=first_call)
    thread.start()
    assert entered.wait(5)

    with bind_request(request_factory()):
        with pytest.raises(DuplicateRequestError):
            create_order(1)

    release.set()
    thread.join(5)

    assert results == {"first": "created"}
    assert call_count == 1


def test_many_concurrent_callers(guard, request_factory):
    """Test that a burst of identical requests runs the operation once."""
    barrier = threading.Barrier(10)
    release = threading.Event()
    outcomes = []
    lock = threading.Lock()

    @guard.idempotent(expire_time=30)
    def create_order():
        release.wait(5)
        return "created"

    def call():
        barrier.wait()
        try:
            with bind_request(request_factory()):
                outcome = create_order()
        except DuplicateRequestError:
            outcome = "duplicate"
        with lock:
            outcomes.append(outcome)
        if outcome == "duplicate" and outcomes.count("duplicate") == 9:
            release.set()

    threads = [threading.Thread(target=call) for _ in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10)

    assert sorted(outcomes) == ["created"] + ["duplicate"] * 9


def test_create_order_end_to_end(store, clock, request_factory):
    """Test concurrent duplicate, delayed release and retry for createOrder."""
    guard = IdempotencyGuard(store)
    worker = DelayedCleanupWorker(store, clock=clock)
    entered = threading.Event()
    release = threading.Event()
    results = []

    @guard.idempotent(
        expire_time=5,
        del_key=True,
        delay_check_seconds=2,
        info="Order is being created",
    )
    def create_order(user_id, sku):
        entered.set()
        release.wait(5)
        return {"user_id": user_id, "sku": sku}

    def first_call():
        with bind_request(request_factory()):
            results.append(create_order(7, "SKU-1"))

    thread = threading.Thread(target=first_call)
    thread.start()
    assert entered.wait(5)

    with bind_request(request_factory()):
        with pytest.raises(DuplicateRequestError) as exc_info:
            create_order(7, "SKU-1")
    assert exc_info.value.message == "Order is being created"
    key = exc_info.value.key

    release.set()
    thread.join(5)
    assert results == [{"user_id": 7, "sku": "SKU-1"}]

    clock.advance(1.5)
    assert worker.run_once() == 0
    assert store.exists(key)

    clock.advance(0.5)
    assert worker.run_once() == 1
    assert not store.exists(key)

    entered.clear()
    with bind_request(request_factory()):
        assert create_order(7, "SKU-1") == {"user_id": 7, "sku": "SKU-1"}


def test_store_unavailable_fails_closed(store, request_factory, monkeypatch):
    """Test that an unreachable store rejects the call instead of running it."""
    guard = IdempotencyGuard(store)
    calls = []

    def unavailable(key, ttl):
        raise StoreUnavailableError("timeout")

    monkeypatch.setattr(store, "try_reserve", unavailable)

    @guard.idempotent(expire_time=5)
    def create_order():
        calls.append(1)

    with bind_request(request_factory()):
        with pytest.raises(StoreUnavailableError):
            create_order()

    assert calls == []


def test_cleanup_failure_does_not_mask_result(store, request_factory, monkeypatch):
    guard = IdempotencyGuard(store)

    def unavailable(key, delay_seconds):
        raise StoreUnavailableError("timeout")

    monkeypatch.setattr(store, "enqueue_delayed_delete", unavailable)

    @guard.idempotent(expire_time=5, del_key=True)
    def create_order():
        return "ok"

    with bind_request(request_factory()):
        assert create_order() == "ok"


def test_unregistered_operation(guard, request_factory):
    with pytest.raises(ConfigurationError):
        guard.invoke("missing#", lambda: None, request=request_factory())


def test_no_request_bound(guard):
    @guard.idempotent(expire_time=5)
    def create_order():
        return "ok"

    with pytest.raises(ConfigurationError):
        create_order()


def test_explicit_request(guard, request_factory):
    @guard.idempotent(expire_time=5)
    def create_order(user_id):
        return user_id

    operation_id = create_order.__idempotent__.operation_id
    request = request_factory()

    assert guard.invoke(operation_id, create_order.__wrapped__, (1,), request=request) == 1
    with pytest.raises(DuplicateRequestError):
        guard.invoke(operation_id, create_order.__wrapped__, (), {"user_id": 1}, request)


def test_bad_key_expression_is_configuration_error(guard, store, request_factory):
    @guard.idempotent(key="#nope")
    def create_order(user_id):
        return user_id

    with bind_request(request_factory()):
        with pytest.raises(ConfigurationError):
            create_order(1)

    assert store.list_keys_by_prefix("idempotent:") == []


def test_custom_key_expression(guard, request_factory):
    @guard.idempotent(key="#order['id']", expire_time=10)
    def create_order(order):
        return order["id"]

    with bind_request(request_factory()):
        create_order({"id": 1, "note": "first"})
        with pytest.raises(DuplicateRequestError):
            create_order({"id": 1, "note": "second"})


def test_methods_share_fingerprint_across_instances(guard, request_factory):
    class OrderService:
        @guard.idempotent(expire_time=10)
        def create(self, user_id):
            return user_id

    with bind_request(request_factory()):
        OrderService().create(1)
        with pytest.raises(DuplicateRequestError):
            OrderService().create(1)


def test_signature_required(store, request_factory, public_key_b64, sign):
    """Test that a bad signature is rejected before anything is reserved."""
    guard = IdempotencyGuard(store, settings=GuardSettings(public_key=public_key_b64))

    @guard.idempotent(expire_time=10, enable_sign_verify=True)
    def create_order():
        return "ok"

    tampered = request_factory(params={"amount": "999", "sign": sign("amount=100")})
    with bind_request(tampered):
        with pytest.raises(SignatureInvalidError):
            create_order()
    assert store.list_keys_by_prefix("idempotent:") == []

    with bind_request(request_factory(params={"amount": "100"})):
        with pytest.raises(SignatureInvalidError):
            create_order()

    signed = request_factory(params={"amount": "100", "sign": sign("amount=100")})
    with bind_request(signed):
        assert create_order() == "ok"


def test_signature_without_public_key(guard, request_factory):
    @guard.idempotent(enable_sign_verify=True)
    def create_order():
        return "ok"

    with bind_request(request_factory()):
        with pytest.raises(ConfigurationError):
            create_order()


@pytest.mark.parametrize(
    "options",
    [
        {"expire_time": 0},
        {"expire_time": -1},
        {"time_unit": "fortnights"},
        {"delay_check_seconds": -1},
    ],
)
def test_invalid_options(guard, options):
    with pytest.raises(ValueError):

        @guard.idempotent(**options)
        def create_order():
            pass
