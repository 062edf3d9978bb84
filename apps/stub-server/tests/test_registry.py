from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from stub_server.errors import InvalidOptionError, InvalidStubError
from stub_server.models import ContentType
from stub_server.registry import InteractionRegistry, interaction_key


def test_records_are_served_once_in_insertion_order(registry: InteractionRegistry) -> None:
    registry.add("GET", "/", 200)
    registry.add("GET", "/", 200)

    first = registry.match_next("GET", "/")
    second = registry.match_next("GET", "/")

    assert first is not None and first.status == 200 and first.body is None
    assert second is not None and second.status == 200 and second.body is None
    assert (first.attempt, second.attempt) == (0, 1)
    assert registry.match_next("GET", "/") is None


def test_fifo_across_distinct_responses(registry: InteractionRegistry) -> None:
    for status in (200, 404, 503):
        registry.add("GET", "/items", status)

    served = [registry.match_next("GET", "/items") for _ in range(3)]

    assert [record.status for record in served] == [200, 404, 503]


def test_exhausted_key_resumes_after_new_add(registry: InteractionRegistry) -> None:
    registry.add("GET", "/ping", 200)
    assert registry.match_next("GET", "/ping") is not None
    assert registry.match_next("GET", "/ping") is None

    registry.add("GET", "/ping", 204)

    record = registry.match_next("GET", "/ping")
    assert record is not None and record.status == 204


def test_keys_are_isolated(registry: InteractionRegistry) -> None:
    registry.add("GET", "/a", 200, {"foo": "bar"})
    registry.add("POST", "/a", 201)

    post = registry.match_next("POST", "/a")
    get = registry.match_next("GET", "/a")

    assert post is not None and post.status == 201
    assert get is not None and get.status == 200 and get.body == {"foo": "bar"}
    assert registry.match_next("POST", "/a") is None
    assert registry.pending("GET", "/a") == 0


def test_unknown_key_is_not_found(registry: InteractionRegistry) -> None:
    assert registry.match_next("GET", "/missing") is None
    assert registry.read_at("GET", "/missing", 0) is None
    assert registry.read_all("GET", "/missing") == []
    assert registry.pending("GET", "/missing") == 0


def test_method_is_case_insensitive(registry: InteractionRegistry) -> None:
    registry.add("get", "/lower", 200)

    assert interaction_key("get", "/lower") == "GET_/lower"
    assert registry.match_next("GET", "/lower") is not None


def test_delay_is_a_field_not_enforced_by_registry(registry: InteractionRegistry) -> None:
    registry.add("GET", "/", 200, {"foo": "bar"}, delay=0.5)

    record = registry.match_next("GET", "/")

    assert record is not None
    assert record.delay == 0.5


def test_read_at_and_read_all_do_not_advance_cursor(registry: InteractionRegistry) -> None:
    registry.add("GET", "/r", 200).add("GET", "/r", 500, content_type="XML")

    assert registry.read_at("GET", "/r", 1).status == 500
    assert registry.read_at("GET", "/r", 1).content_type is ContentType.XML
    assert registry.read_at("GET", "/r", 2) is None
    assert registry.read_at("GET", "/r", -1) is None
    assert [record.status for record in registry.read_all("GET", "/r")] == [200, 500]
    assert registry.match_next("GET", "/r").status == 200


def test_returned_records_are_snapshots(registry: InteractionRegistry) -> None:
    registry.add("GET", "/snap", 200)

    record = registry.match_next("GET", "/snap")
    record.status = 418

    assert registry.read_at("GET", "/snap", 0).status == 200


def test_read_all_keeps_consumed_records(registry: InteractionRegistry) -> None:
    registry.add("GET", "/x", 200).add("GET", "/x", 201)
    registry.match_next("GET", "/x")
    registry.match_next("GET", "/x")

    assert [record.status for record in registry.read_all("GET", "/x")] == [200, 201]


def test_reset_discards_every_key(registry: InteractionRegistry) -> None:
    for _ in range(5):
        registry.add("PUT", "/k", 200)
    registry.add("GET", "/other", 200)

    registry.reset()

    assert registry.read_all("PUT", "/k") == []
    assert registry.match_next("PUT", "/k") is None
    assert registry.match_next("GET", "/other") is None
    assert registry.keys() == []


def test_keys_lists_registered_pairs(registry: InteractionRegistry) -> None:
    registry.add("GET", "/a", 200).add("POST", "/b", 201).add("GET", "/a", 200)

    assert sorted(registry.keys()) == [("GET", "/a"), ("POST", "/b")]


def test_capture_is_visible_through_read_at(registry: InteractionRegistry) -> None:
    calls: list[tuple[bytes, dict[str, str]]] = []
    registry.add("POST", "/c", 202, capture_callback=lambda body, headers: calls.append((body, headers)))

    record = registry.match_next("POST", "/c")
    captured = registry.record_capture(record, b"payload", {"X-Id": "7"})

    stored = registry.read_at("POST", "/c", 0)
    assert captured is not None and captured.captured
    assert stored.captured_body == b"payload"
    assert stored.captured_headers == {"X-Id": "7"}
    assert calls == [(b"payload", {"X-Id": "7"})]


def test_capture_after_reset_does_not_touch_new_stub(registry: InteractionRegistry) -> None:
    old_calls: list[bytes] = []
    new_calls: list[bytes] = []
    registry.add("GET", "/", 200, capture_callback=lambda body, headers: old_calls.append(body))
    consumed = registry.match_next("GET", "/")
    registry.reset()
    registry.add("GET", "/", 201, capture_callback=lambda body, headers: new_calls.append(body))

    assert registry.record_capture(consumed, b"stale", {}) is None

    assert old_calls == [b"stale"]
    assert new_calls == []
    assert not registry.read_at("GET", "/", 0).captured
    fresh = registry.match_next("GET", "/")
    assert registry.record_capture(fresh, b"fresh", {}) is not None
    assert new_calls == [b"fresh"]
    assert registry.read_at("GET", "/", 0).captured_body == b"fresh"


def test_capture_after_reset_without_new_stub(registry: InteractionRegistry) -> None:
    calls: list[bytes] = []
    registry.add("POST", "/c", 202, capture_callback=lambda body, headers: calls.append(body))
    consumed = registry.match_next("POST", "/c")
    registry.reset()

    assert registry.record_capture(consumed, b"late", {}) is None
    assert calls == [b"late"]
    assert registry.read_all("POST", "/c") == []


def test_mutating_returned_body_leaves_stored_body_alone(registry: InteractionRegistry) -> None:
    registry.add("GET", "/body", 200, {"items": [1]})

    record = registry.match_next("GET", "/body")
    record.body["items"].append(2)

    assert registry.read_at("GET", "/body", 0).body == {"items": [1]}


def test_capture_callback_runs_outside_lock(registry: InteractionRegistry) -> None:
    seen: list[int] = []
    registry.add("GET", "/reentrant", 200, capture_callback=lambda body, headers: seen.append(len(registry.read_all("GET", "/reentrant"))))

    consumed = registry.match_next("GET", "/reentrant")
    registry.record_capture(consumed, b"", {})

    assert seen == [1]


@pytest.mark.parametrize(
    ("method", "path", "status"),
    [
        ("", "/", 200),
        ("GET", "", 200),
        ("GET", "/", 42),
        ("GET", "/", "200"),
    ],
)
def test_add_rejects_malformed_stubs(registry: InteractionRegistry, method: str, path: str, status: object) -> None:
    with pytest.raises(InvalidStubError):
        registry.add(method, path, status)  # type: ignore[arg-type]
    assert registry.keys() == []


def test_invalid_options_abort_registration(registry: InteractionRegistry) -> None:
    with pytest.raises(InvalidOptionError):
        registry.add("GET", "/", 200, delay=-1)
    with pytest.raises(InvalidOptionError):
        registry.add("GET", "/", 200, options={"unknown": True})

    assert registry.read_all("GET", "/") == []


def test_concurrent_matches_deliver_each_record_once(registry: InteractionRegistry) -> None:
    callers = 64
    for index in range(callers):
        registry.add("GET", "/c", 200, {"index": index})
    barrier = threading.Barrier(callers)

    def consume() -> int | None:
        barrier.wait()
        record = registry.match_next("GET", "/c")
        return None if record is None else record.body["index"]

    with ThreadPoolExecutor(max_workers=callers) as pool:
        results = list(pool.map(lambda _: consume(), range(callers)))

    assert sorted(results) == list(range(callers))
    assert registry.match_next("GET", "/c") is None


def test_concurrent_add_then_match_never_misses(registry: InteractionRegistry) -> None:
    def add_and_match(_: int) -> int | None:
        registry.add("POST", "/e", 202, {"foo": "bar"})
        record = registry.match_next("POST", "/e")
        return None if record is None else record.attempt

    with ThreadPoolExecutor(max_workers=16) as pool:
        attempts = list(pool.map(add_and_match, range(100)))

    assert None not in attempts
    assert sorted(attempts) == list(range(100))
    assert len(registry.read_all("POST", "/e")) == 100
