from __future__ import annotations

import pytest

from sandbox_context.observability.domain.logging import LogMessage, Severity
from sandbox_context.observability.log_sink import LogSink


class _CollectingSink:
    def __init__(self) -> None:
        self.messages: list[LogMessage] = []
        self.closed = False

    def emit(self, message: LogMessage) -> None:
        self.messages.append(message)

    def close(self) -> None:
        self.closed = True


def test_log_sink_emits_at_or_below_threshold() -> None:
    # LOG-01: INFO threshold passes INFO/WARNING/ERROR/CRITICAL and suppresses DEBUG.
    sink = _CollectingSink()
    log_sink = LogSink(Severity.INFO, [sink])

    assert log_sink.log(Severity.CRITICAL, "c") is True
    assert log_sink.log(Severity.ERROR, "e") is True
    assert log_sink.log(Severity.WARNING, "w") is True
    assert log_sink.log(Severity.INFO, "i") is True
    assert log_sink.log(Severity.DEBUG, "d") is False

    assert [message.level for message in sink.messages] == ["critical", "error", "warning", "info"]


def test_log_sink_suppressed_call_does_not_flip_flag() -> None:
    # LOG-02: a call above the threshold leaves did_log_anything false.
    log_sink = LogSink(Severity.ERROR, [_CollectingSink()])

    log_sink.log(Severity.INFO, "quiet")

    assert log_sink.did_log_anything is False


def test_log_sink_emission_sets_flag_and_reset_clears_it() -> None:
    # LOG-03: emission flips the flag; reset() returns it to false.
    log_sink = LogSink(Severity.INFO, [_CollectingSink()])

    log_sink.log(Severity.INFO, "hello")
    assert log_sink.did_log_anything is True

    log_sink.reset()
    assert log_sink.did_log_anything is False


def test_log_sink_off_threshold_suppresses_everything() -> None:
    # LOG-04: OFF threshold never emits, not even CRITICAL.
    sink = _CollectingSink()
    log_sink = LogSink(Severity.OFF, [sink])

    assert log_sink.log(Severity.CRITICAL, "boom") is False
    assert sink.messages == []
    assert log_sink.did_log_anything is False


def test_log_sink_forwards_child_lines_only_at_child_threshold() -> None:
    # LOG-05: emulator output passes only when the threshold is CHILD.
    sink = _CollectingSink()
    log_sink = LogSink(Severity.DEBUG, [sink])

    assert log_sink.forward_child("default", "info", "emulator line") is False
    assert log_sink.did_log_anything is False

    log_sink.threshold = Severity.CHILD
    assert log_sink.forward_child("default", "info", "emulator line") is True
    assert log_sink.did_log_anything is True
    assert sink.messages[-1].fields == {"module": "default", "source": "child"}


def test_log_sink_child_threshold_still_emits_direct_calls() -> None:
    # LOG-06: CHILD is the most verbose threshold; DEBUG calls pass too.
    sink = _CollectingSink()
    log_sink = LogSink(Severity.CHILD, [sink])

    assert log_sink.log(Severity.DEBUG, "debug line") is True


def test_log_sink_rejects_child_as_call_severity() -> None:
    # LOG-07: CHILD is a threshold only.
    log_sink = LogSink(Severity.CHILD)
    with pytest.raises(ValueError, match="threshold"):
        log_sink.log(Severity.CHILD, "nope")


def test_log_sink_threshold_accepts_names() -> None:
    # LOG-08: threshold can be given as a case-insensitive name.
    log_sink = LogSink("warning")
    assert log_sink.threshold is Severity.WARNING

    log_sink.threshold = "Debug"
    assert log_sink.threshold is Severity.DEBUG


def test_severity_parse_rejects_unknown_values() -> None:
    # LOG-09: unknown severity names/values are explicit errors.
    with pytest.raises(ValueError, match="unknown severity"):
        Severity.parse("verbose")
    with pytest.raises(ValueError):
        Severity.parse(42)


def test_severity_order_is_total() -> None:
    # LOG-10: OFF < CRITICAL < ERROR < WARNING < INFO < DEBUG < CHILD.
    ordered = [
        Severity.OFF,
        Severity.CRITICAL,
        Severity.ERROR,
        Severity.WARNING,
        Severity.INFO,
        Severity.DEBUG,
        Severity.CHILD,
    ]
    assert ordered == sorted(ordered)


def test_log_sink_close_closes_sinks_once() -> None:
    # LOG-11: close() closes every sink and detaches them.
    sink = _CollectingSink()
    log_sink = LogSink(Severity.INFO, [sink])

    log_sink.close()
    assert sink.closed is True

    log_sink.log(Severity.INFO, "after close")
    assert sink.messages == []


def test_log_message_fields_are_carried() -> None:
    # LOG-12: keyword fields end up on the emitted record.
    sink = _CollectingSink()
    log_sink = LogSink(Severity.DEBUG, [sink])

    log_sink.log(Severity.DEBUG, "supervisor.module_ready", module="default", rpc_port=1234)

    assert sink.messages[0].fields == {"module": "default", "rpc_port": 1234}


def test_log_sink_empty_message_is_still_emitted() -> None:
    # LOG-13: an empty message is a valid line and flips the flag.
    sink = _CollectingSink()
    log_sink = LogSink(Severity.INFO, [sink])

    assert log_sink.log(Severity.INFO, "") is True
    assert log_sink.did_log_anything is True
    assert [(message.level, message.message) for message in sink.messages] == [("info", "")]


def test_log_message_requires_level_only() -> None:
    # LOG-14: LogMessage accepts an empty message but not an empty level.
    assert LogMessage(level="info", message="").message == ""
    with pytest.raises(ValueError, match="level"):
        LogMessage(level="", message="text")
