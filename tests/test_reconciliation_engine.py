import threading

from reconciliation_service.services.payment_client import PaymentProviderUnavailableError


def test_approved_payment_decrements_stock_once_and_notifies(engine, payment_client, notifier, load, order_501):
    order_id, product_a, product_b = order_501
    payment_client.set_payment("pay_999", "approved", "501", amount="250.00")

    outcome = engine.process_event("payment", "pay_999")

    assert outcome.status == "processed"
    assert outcome.action == "approved"
    assert load.stock(product_a) == 8
    assert load.stock(product_b) == 4

    order = load.order(order_id)
    assert order.status == "approved"
    assert order.stock_reserved is True
    assert order.provider_transaction_id == "pay_999"
    assert order.approved_at is not None

    event = load.event("pay_999")
    assert event.status == "processed"
    assert event.attempts == 1

    assert [s[0] for s in notifier.sent_templates("order_confirmation")] == ["customer@shop.test"]
    assert [s[0] for s in notifier.sent_templates("new_order")] == ["admin@shop.test"]


def test_redelivery_of_processed_event_is_skipped(engine, payment_client, notifier, load, order_501):
    _, product_a, product_b = order_501
    payment_client.set_payment("pay_999", "approved", "501")
    engine.process_event("payment", "pay_999")

    outcome = engine.process_event("payment", "pay_999")

    assert outcome.status == "skipped"
    assert payment_client.fetch_calls == ["pay_999"]
    assert load.stock(product_a) == 8
    assert load.stock(product_b) == 4
    assert len(notifier.sent) == 2


def test_concurrent_deliveries_apply_stock_once(engine, payment_client, notifier, load, order_501):
    order_id, product_a, product_b = order_501
    payment_client.set_payment("pay_999", "approved", "501")

    # Both deliveries get past the event log before either takes the order lock
    barrier = threading.Barrier(2, timeout=10)
    payment_client.on_fetch = lambda payment_id: barrier.wait()

    outcomes = []

    def deliver():
        outcomes.append(engine.process_event("payment", "pay_999"))

    threads = [threading.Thread(target=deliver) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert sorted(o.action for o in outcomes) == ["already_approved", "approved"]
    assert load.stock(product_a) == 8
    assert load.stock(product_b) == 4
    assert load.order(order_id).status == "approved"
    assert len(notifier.sent_templates("order_confirmation")) == 1


def test_second_payment_for_same_order_is_a_no_op(engine, payment_client, notifier, load, order_501):
    order_id, product_a, _ = order_501
    payment_client.set_payment("pay_1", "approved", "501")
    payment_client.set_payment("pay_2", "approved", "501")

    first = engine.process_event("payment", "pay_1")
    second = engine.process_event("payment", "pay_2")

    assert first.action == "approved"
    assert second.action == "already_approved"
    assert second.status == "processed"
    assert load.stock(product_a) == 8
    assert load.order(order_id).provider_transaction_id == "pay_1"
    assert len(notifier.sent_templates("order_confirmation")) == 1


def test_insufficient_stock_fails_without_side_effects(engine, payment_client, notifier, load, make_product, make_order):
    product = make_product(stock=1)
    order_id = make_order([(product, 2, "100.00")])
    payment_client.set_payment("pay_1", "approved", str(order_id))

    outcome = engine.process_event("payment", "pay_1")

    assert outcome.status == "failed"
    assert "StockIntegrityError" in outcome.error
    assert load.stock(product) == 1
    assert load.order(order_id).status == "pending"
    assert load.event("pay_1").status == "failed"
    assert notifier.sent == []


def test_stock_violation_on_one_item_leaves_other_items_untouched(engine, payment_client, load, make_product, make_order):
    plenty = make_product("Plenty", stock=10)
    scarce = make_product("Scarce", stock=0)
    order_id = make_order([(plenty, 3, "100.00"), (scarce, 1, "100.00")])
    payment_client.set_payment("pay_1", "approved", str(order_id))

    engine.process_event("payment", "pay_1")

    assert load.stock(plenty) == 10
    assert load.stock(scarce) == 0
    assert load.order(order_id).stock_reserved is False


def test_pending_payment_leaves_event_open_for_the_final_status(engine, payment_client, load, order_501):
    order_id, product_a, _ = order_501
    payment_client.set_payment("pay_999", "in_process", "501")

    outcome = engine.process_event("payment", "pay_999")

    assert outcome.status == "received"
    assert outcome.action == "awaiting_final_status"
    assert load.event("pay_999").status == "received"
    assert load.order(order_id).status == "pending"
    assert load.stock(product_a) == 10

    payment_client.set_payment("pay_999", "approved", "501")
    outcome = engine.process_event("payment", "pay_999")

    assert outcome.action == "approved"
    assert load.stock(product_a) == 8


def test_rejected_payment_is_processed_without_changes(engine, payment_client, notifier, load, order_501):
    order_id, product_a, _ = order_501
    payment_client.set_payment("pay_999", "rejected", "501")

    outcome = engine.process_event("payment", "pay_999")

    assert outcome.status == "processed"
    assert outcome.action == "not_approved"
    assert load.order(order_id).status == "pending"
    assert load.stock(product_a) == 10
    assert notifier.sent == []


def test_unknown_order_marks_event_failed(engine, payment_client, load):
    payment_client.set_payment("pay_1", "approved", "4242")

    outcome = engine.process_event("payment", "pay_1")

    assert outcome.status == "failed"
    event = load.event("pay_1")
    assert event.status == "failed"
    assert "Order 4242 not found" in event.error_message


def test_missing_external_reference_marks_event_failed(engine, payment_client, load):
    payment_client.set_payment("pay_1", "approved", None)

    outcome = engine.process_event("payment", "pay_1")

    assert outcome.status == "failed"
    assert "InvalidPaymentReferenceError" in load.event("pay_1").error_message


def test_payment_unknown_to_provider_marks_event_failed(engine, load):
    outcome = engine.process_event("payment", "pay_missing")

    assert outcome.status == "failed"
    assert "PaymentNotFoundError" in load.event("pay_missing").error_message


def test_provider_outage_can_be_reprocessed(engine, payment_client, load, order_501):
    order_id, product_a, _ = order_501
    payment_client.set_payment("pay_999", "approved", "501")
    payment_client.fetch_error = PaymentProviderUnavailableError("Payment provider unavailable: timeout")

    outcome = engine.process_event("payment", "pay_999")

    assert outcome.status == "failed"
    event = load.event("pay_999")
    assert event.status == "failed"
    assert "unavailable" in event.error_message
    assert load.stock(product_a) == 10

    payment_client.fetch_error = None
    scheduled = []
    reset = engine.reprocess(event.id, lambda func, *args: scheduled.append(func(*args)))

    assert reset.event_id == "pay_999"
    assert scheduled[0].action == "approved"
    event = load.event("pay_999")
    assert event.status == "processed"
    assert event.error_message is None
    assert event.attempts == 2
    assert load.stock(product_a) == 8
    assert load.order(order_id).status == "approved"


def test_reprocess_unknown_event_returns_none(engine):
    assert engine.reprocess(12345, lambda func, *args: func(*args)) is None


def test_non_payment_topic_is_ignored_without_provider_call(engine, payment_client, load):
    outcome = engine.process_event("merchant_order", "mo_1")

    assert outcome.action == "ignored_topic"
    assert payment_client.fetch_calls == []
    assert load.event("mo_1") is None


def test_other_topic_with_same_id_does_not_shadow_payment(engine, payment_client, load, order_501):
    order_id, product_a, _ = order_501
    engine.process_event("merchant_order", "777")
    payment_client.set_payment("777", "approved", "501")

    outcome = engine.process_event("payment", "777")

    assert outcome.action == "approved"
    assert load.order(order_id).status == "approved"
    assert load.stock(product_a) == 8


def test_approval_for_cancelled_order_is_not_applied(engine, payment_client, notifier, load, make_product, make_order):
    product = make_product(stock=5)
    order_id = make_order([(product, 1, "100.00")], status="cancelled")
    payment_client.set_payment("pay_1", "approved", str(order_id))

    outcome = engine.process_event("payment", "pay_1")

    assert outcome.status == "failed"
    assert "OrderNotPayableError" in outcome.error
    assert load.order(order_id).status == "cancelled"
    assert load.stock(product) == 5
    assert notifier.sent == []


def test_amount_mismatch_is_not_applied(engine, payment_client, load, order_501):
    order_id, product_a, _ = order_501
    payment_client.set_payment("pay_999", "approved", "501", amount="1.00")

    outcome = engine.process_event("payment", "pay_999")

    assert outcome.status == "failed"
    assert "PaymentAmountMismatchError" in outcome.error
    assert load.order(order_id).status == "pending"
    assert load.stock(product_a) == 10


def test_reserved_transfer_order_is_approved_without_second_decrement(engine, payment_client, load, make_product, make_order):
    product = make_product(stock=8)
    order_id = make_order([(product, 2, "100.00")], status="pending_transfer", stock_reserved=True)
    payment_client.set_payment("pay_1", "approved", str(order_id))

    outcome = engine.process_event("payment", "pay_1")

    assert outcome.action == "approved"
    assert load.stock(product) == 8
    assert load.order(order_id).status == "approved"


def test_notification_failure_does_not_undo_approval(engine, payment_client, notifier, load, order_501):
    order_id, product_a, _ = order_501
    notifier.failing_recipients.add("customer@shop.test")
    payment_client.set_payment("pay_999", "approved", "501")

    outcome = engine.process_event("payment", "pay_999")

    assert outcome.status == "processed"
    assert load.order(order_id).status == "approved"
    assert load.stock(product_a) == 8
    assert len(notifier.sent_templates("new_order")) == 1
