from reconciliation_service.repositories.webhook_event_repository import WebhookEventRepository


def test_first_delivery_is_recorded_as_received(session_factory, load):
    with session_factory() as db:
        result = WebhookEventRepository(db).record_or_skip("pay_1", "payment", {"id": "pay_1"})

    assert result.is_new is True
    event = load.event("pay_1")
    assert event.status == "received"
    assert event.payload == {"id": "pay_1"}


def test_redelivery_does_not_create_duplicate_rows(session_factory, load):
    with session_factory() as db:
        repo = WebhookEventRepository(db)
        repo.record_or_skip("pay_1", "payment")
        again = repo.record_or_skip("pay_1", "payment")

    assert again.is_new is True
    assert len(load.events()) == 1


def test_processed_event_is_skipped(session_factory):
    with session_factory() as db:
        repo = WebhookEventRepository(db)
        repo.record_or_skip("pay_1", "payment")
        repo.mark_processing("pay_1")
        repo.mark_processed("pay_1")

        result = repo.record_or_skip("pay_1", "payment")

    assert result.is_new is False
    assert result.event.status == "processed"


def test_failed_event_can_be_retried(session_factory):
    with session_factory() as db:
        repo = WebhookEventRepository(db)
        repo.record_or_skip("pay_1", "payment")
        repo.mark_failed("pay_1", "provider timeout")

        result = repo.record_or_skip("pay_1", "payment")

    assert result.is_new is True
    assert result.event.error_message == "provider timeout"


def test_status_transitions_are_idempotent(session_factory, load):
    with session_factory() as db:
        repo = WebhookEventRepository(db)
        repo.record_or_skip("pay_1", "payment")
        repo.mark_processing("pay_1")
        repo.mark_processing("pay_1")
        repo.mark_processed("pay_1")
        repo.mark_processed("pay_1")

    event = load.event("pay_1")
    assert event.status == "processed"
    assert event.attempts == 2
    assert event.processed_at is not None


def test_marking_unknown_event_returns_none(session_factory):
    with session_factory() as db:
        repo = WebhookEventRepository(db)
        assert repo.mark_processed("missing") is None
        assert repo.mark_failed("missing", "boom") is None


def test_reset_clears_error(session_factory):
    with session_factory() as db:
        repo = WebhookEventRepository(db)
        event = repo.record_or_skip("pay_1", "payment").event
        repo.mark_failed("pay_1", "boom")

        reset = repo.reset(event.id)

    assert reset.status == "received"
    assert reset.error_message is None


def test_list_returns_most_recent_first(session_factory):
    with session_factory() as db:
        repo = WebhookEventRepository(db)
        for i in range(5):
            repo.record_or_skip(f"pay_{i}", "payment")

        events = repo.list(limit=3)

    assert [e.event_id for e in events] == ["pay_4", "pay_3", "pay_2"]
