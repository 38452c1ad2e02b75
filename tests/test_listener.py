"""
Tests for the response event stream: streamtap/listener.py
"""
import threading

import pytest

from streamtap.errors import CDPCommandError, EventStreamError, SessionClosedError
from streamtap.listener import EventListener


class TestStart:
    def test_subscribes_then_enables(self, fake_session):
        listener = EventListener(fake_session)
        listener.start()

        assert "Network.responseReceived" in fake_session.callbacks
        assert fake_session.close_callback is not None
        assert fake_session.commands == [("Network.enable", None)]

    def test_start_twice(self, fake_session):
        listener = EventListener(fake_session)
        listener.start()
        with pytest.raises(RuntimeError):
            listener.start()

    @pytest.mark.parametrize("error", [
        TimeoutError("Command Network.enable timed out"),
        SessionClosedError("Connection closed"),
        CDPCommandError("Network.enable", {"message": "Not allowed"}),
    ])
    def test_enable_failure_is_stream_error(self, fake_session, error):
        def fail(method, params=None, timeout=None):
            raise error

        fake_session.execute = fail
        listener = EventListener(fake_session)

        with pytest.raises(EventStreamError) as exc_info:
            listener.start()
        assert exc_info.value.__cause__ is error


class TestStream:
    def test_yields_urls_in_arrival_order(self, fake_session):
        listener = EventListener(fake_session)
        listener.start()
        urls = [f"https://media.example/{n}" for n in range(500)]
        for url in urls:
            fake_session.emit_response(url)
        listener.stop()

        assert list(listener) == urls

    def test_events_from_another_thread(self, fake_session):
        listener = EventListener(fake_session)
        listener.start()
        urls = [f"https://media.example/{n}" for n in range(200)]

        def produce():
            for url in urls:
                fake_session.emit_response(url)
            listener.stop()

        threading.Thread(target=produce).start()
        assert list(listener.urls()) == urls

    def test_event_without_url_is_skipped(self, fake_session):
        listener = EventListener(fake_session)
        listener.start()
        fake_session.callbacks["Network.responseReceived"][0]({"requestId": "9", "response": {}})
        fake_session.emit_response("https://a.example/x")
        listener.stop()

        assert list(listener) == ["https://a.example/x"]

    def test_close_is_fatal_after_buffered_events(self, fake_session):
        listener = EventListener(fake_session)
        listener.start()
        fake_session.emit_response("https://a.example/1")
        fake_session.close("socket closed: 1006 abnormal")

        stream = iter(listener)
        assert next(stream) == "https://a.example/1"
        with pytest.raises(EventStreamError, match="1006"):
            next(stream)

    def test_stream_consumed_once(self, fake_session):
        listener = EventListener(fake_session)
        listener.start()
        listener.stop()
        assert list(listener) == []

        with pytest.raises(RuntimeError):
            next(iter(listener))
