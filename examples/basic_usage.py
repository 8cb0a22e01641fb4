"""Basic usage examples for idempotent guard."""

import time

from idempotent_guard import (
    DelayedCleanupWorker,
    DuplicateRequestError,
    IdempotencyGuard,
    MemoryStore,
    Request,
    bind_request,
)

store = MemoryStore()
guard = IdempotencyGuard(store)


# Example 1: Reject duplicates while the reservation lives
@guard.idempotent(expire_time=5, info="Order already submitted")
def create_order(user_id, amount):
    """Create an order and charge the user."""
    print(f"💳 Charging user {user_id} ${amount}")
    return {"order_id": 12345, "amount": amount, "user_id": user_id}


# Example 2: Key on one field only
@guard.idempotent(key="#order['id']", expire_time=60)
def ship_order(order):
    """Only one shipment per order id, whatever else is in the payload."""
    print(f"📦 Shipping order {order['id']}")
    return {"shipped": order["id"]}


# Example 3: Release after completion, with a grace period
@guard.idempotent(expire_time=30, del_key=True, delay_check_seconds=1)
def refund(order_id):
    print(f"↩️  Refunding order {order_id}")
    return {"refunded": order_id}


if __name__ == "__main__":
    request = Request(
        method="POST",
        path="/orders",
        headers={"Token": "session-abc"},
        remote_addr="203.0.113.7",
        remote_port=51234,
    )

    with bind_request(request):
        print("=" * 60)
        print("Example 1: Duplicate rejection")
        print("=" * 60)
        print(f"Result: {create_order(user_id=123, amount=100)}")
        try:
            create_order(user_id=123, amount=100)
        except DuplicateRequestError as e:
            print(f"❌ Rejected: {e}")
        print(f"Different arguments run: {create_order(user_id=456, amount=200)}\n")

        print("=" * 60)
        print("Example 2: Custom key expression")
        print("=" * 60)
        ship_order({"id": 1, "note": "leave at door"})
        try:
            ship_order({"id": 1, "note": "ring the bell"})
        except DuplicateRequestError as e:
            print(f"❌ Rejected: {e}\n")

        print("=" * 60)
        print("Example 3: Delayed release")
        print("=" * 60)
        worker = DelayedCleanupWorker(store, interval=0.2)
        worker.start()
        refund(order_id=9)
        time.sleep(1.5)
        print(f"Retry after grace period: {refund(order_id=9)}")
        worker.stop()
