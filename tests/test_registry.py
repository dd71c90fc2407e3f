"""Unit tests for the session registry and retry tracker."""

from wagateway.registry import UNLIMITED_RETRIES, RetryTracker, SessionRegistry


class TestSessionRegistry:
    """Test registry bookkeeping."""

    def test_set_get_has(self) -> None:
        registry: SessionRegistry[str] = SessionRegistry()
        registry.set("s1", "handle-1")

        assert registry.has("s1")
        assert registry.get("s1") == "handle-1"
        assert registry.get("missing") is None
        assert len(registry) == 1

    def test_set_replaces_existing_entry(self) -> None:
        registry: SessionRegistry[str] = SessionRegistry()
        registry.set("s1", "old")
        registry.set("s1", "new")

        assert registry.get("s1") == "new"
        assert registry.list_ids() == ["s1"]

    def test_delete_returns_handle_and_is_idempotent(self) -> None:
        registry: SessionRegistry[str] = SessionRegistry()
        registry.set("s1", "handle-1")

        assert registry.delete("s1") == "handle-1"
        assert registry.delete("s1") is None
        assert not registry.has("s1")

    def test_list_ids_keeps_insertion_order(self) -> None:
        registry: SessionRegistry[int] = SessionRegistry()
        for index, sid in enumerate(["b", "a", "c"]):
            registry.set(sid, index)

        assert registry.list_ids() == ["b", "a", "c"]
        assert registry.values() == [0, 1, 2]


class TestRetryTracker:
    """Test reconnect budgeting."""

    def test_budget_of_two_allows_two_attempts(self) -> None:
        tracker = RetryTracker(max_retries=2)

        assert tracker.should_reconnect("s1") is True
        assert tracker.should_reconnect("s1") is True
        assert tracker.should_reconnect("s1") is False
        assert tracker.attempts("s1") == 2

    def test_refusal_leaves_counter_unchanged(self) -> None:
        tracker = RetryTracker(max_retries=1)
        tracker.should_reconnect("s1")

        tracker.should_reconnect("s1")
        tracker.should_reconnect("s1")

        assert tracker.attempts("s1") == 1

    def test_zero_never_reconnects(self) -> None:
        tracker = RetryTracker(max_retries=0)

        assert tracker.should_reconnect("s1") is False
        assert tracker.attempts("s1") == 0

    def test_unlimited(self) -> None:
        tracker = RetryTracker(max_retries=UNLIMITED_RETRIES)

        assert all(tracker.should_reconnect("s1") for _ in range(50))
        assert tracker.attempts("s1") == 50

    def test_clear_resets_to_first_attempt(self) -> None:
        tracker = RetryTracker(max_retries=1)
        tracker.should_reconnect("s1")

        tracker.clear("s1")

        assert tracker.attempts("s1") == 0
        assert tracker.should_reconnect("s1") is True

    def test_sessions_are_counted_separately(self) -> None:
        tracker = RetryTracker(max_retries=1)

        assert tracker.should_reconnect("s1") is True
        assert tracker.should_reconnect("s2") is True
        assert tracker.should_reconnect("s1") is False
