"""Running the guard on Redis with module scanning and background tasks.

Requires a Redis server (default: redis://localhost:6379/0) and:
    pip install idempotent-guard[redis]

Configuration comes from the environment, e.g.:
    IDEMPOTENT_SCAN_MODULES=__main__
    IDEMPOTENT_REDIS_URL=redis://localhost:6379/0
"""

import os

from idempotent_guard import (
    DuplicateRequestError,
    GuardSettings,
    IdempotencyGuard,
    Request,
    bind_request,
    idempotent,
)


@idempotent(expire_time=5, del_key=True, delay_check_seconds=2, info="Payment in progress")
def pay_invoice(invoice_id: int, amount: int):
    print(f"💳 Paying invoice {invoice_id}: ${amount}")
    return {"invoice_id": invoice_id, "paid": amount}


def main() -> None:
    os.environ.setdefault("IDEMPOTENT_SCAN_MODULES", "__main__")
    settings = GuardSettings()

    guard = IdempotencyGuard.from_settings(settings).install()
    guard.start_background_tasks()

    request = Request(
        method="POST",
        path="/invoices/1/pay",
        headers={"token": "session-xyz", "X-Forwarded-For": "198.51.100.9, 10.0.0.2"},
        remote_addr="10.0.0.2",
        remote_port=40123,
    )

    try:
        with bind_request(request):
            print(pay_invoice(1, 250))
            try:
                pay_invoice(1, 250)
            except DuplicateRequestError as e:
                print(f"❌ {e}")
    finally:
        guard.stop_background_tasks()


if __name__ == "__main__":
    main()
