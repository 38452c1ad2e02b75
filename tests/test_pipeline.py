"""
Tests for the capture pipeline and its failure policy: streamtap/pipeline.py
"""
import threading

import httpx
import pytest

from streamtap.config import CaptureConfig
from streamtap.dispatcher import DownloadDispatcher
from streamtap.downloader import Downloader
from streamtap.errors import BootstrapError, ConnectCancelledError, EventStreamError
from streamtap.models import JobNamer, JobOutcome
from streamtap.pipeline import CapturePipeline
from tests.fakes import FakeSession


class FakeConnector:
    def __init__(self, session, bootstrap_error=None):
        self.session = session
        self.bootstrap_error = bootstrap_error
        self.bootstrapped = False

    def connect(self, cancel=None):
        return self.session

    def bootstrap(self, session):
        if self.bootstrap_error:
            raise self.bootstrap_error
        self.bootstrapped = True


class RecordingRunner:
    def __init__(self):
        self.jobs = []
        self.lock = threading.Lock()

    def run(self, job):
        with self.lock:
            self.jobs.append(job)
        return JobOutcome(job, bytes_written=len(job.source_url))


def _pipeline(tmp_path, session, runner=None, **config):
    runner = runner or RecordingRunner()
    settings = CaptureConfig(output_dir=str(tmp_path), **config)
    dispatcher = DownloadDispatcher(runner, workers=2, queue_size=8)
    pipeline = CapturePipeline(
        settings,
        connector=FakeConnector(session),
        dispatcher=dispatcher,
        namer=JobNamer(tmp_path, run_id="test"),
    )
    return pipeline, runner


def _run_in_thread(pipeline):
    errors = []

    def target():
        try:
            pipeline.run()
        except Exception as e:
            errors.append(e)

    thread = threading.Thread(target=target)
    thread.start()
    return thread, errors


# ── handle_url ───────────────────────────────────────────────────────────────

class TestHandleURL:
    def test_segment_url_becomes_job(self, tmp_path, fake_session):
        pipeline, _ = _pipeline(tmp_path, fake_session)

        job = pipeline.handle_url("https://media.example/foo/range/0-1023?id=5")

        assert job.source_url == "https://media.example?id=5"
        assert job.target_path.parent == tmp_path
        assert job.target_path.name.startswith("DL-test-")
        assert pipeline.dispatcher.pending == 1

    def test_non_segment_url_ignored(self, tmp_path, fake_session):
        pipeline, _ = _pipeline(tmp_path, fake_session)

        assert pipeline.handle_url("https://media.example/video/manifest.mpd") is None
        assert pipeline.dispatcher.pending == 0

    def test_malformed_segment_url_dropped(self, tmp_path, fake_session):
        pipeline, _ = _pipeline(tmp_path, fake_session)

        assert pipeline.handle_url("http://host:bad/x/range/0-10") is None
        assert pipeline.handle_url("https://ok.example/range/0-10").source_url == "https://ok.example"

    def test_each_job_keeps_its_own_url(self, tmp_path, fake_session):
        pipeline, _ = _pipeline(tmp_path, fake_session)

        jobs = [pipeline.handle_url(f"https://media.example/s/range/0-1?id={n}") for n in range(5)]

        assert [j.source_url for j in jobs] == [f"https://media.example?id={n}" for n in range(5)]
        assert len({j.target_path for j in jobs}) == 5

    def test_submit_after_shutdown_is_dropped(self, tmp_path, fake_session):
        pipeline, _ = _pipeline(tmp_path, fake_session)
        pipeline.dispatcher.shutdown(wait=False)

        assert pipeline.handle_url("https://media.example/range/0-1") is None


# ── run / stop ───────────────────────────────────────────────────────────────

class TestRun:
    def test_end_to_end_with_stop(self, tmp_path, fake_session):
        pipeline, runner = _pipeline(tmp_path, fake_session)
        thread, errors = _run_in_thread(pipeline)
        assert fake_session.subscribed.wait(5)

        fake_session.emit_response("https://media.example/video/manifest.mpd")
        for n in range(6):
            fake_session.emit_response(f"https://media.example/a/range/0-100?id={n}")
        pipeline.stop()
        thread.join(5)

        assert not thread.is_alive()
        assert errors == []
        assert sorted(j.source_url for j in runner.jobs) == sorted(f"https://media.example?id={n}" for n in range(6))
        assert pipeline.connector.bootstrapped
        assert fake_session.disconnected
        assert pipeline.dispatcher.closed

    def test_downloads_reach_disk(self, tmp_path, fake_session):
        payload = b"\x00\x01segment-bytes" * 100
        client = httpx.Client(transport=httpx.MockTransport(lambda req: httpx.Response(200, content=payload)))
        pipeline, _ = _pipeline(tmp_path, fake_session, runner=Downloader(client=client))
        thread, errors = _run_in_thread(pipeline)
        assert fake_session.subscribed.wait(5)

        fake_session.emit_response("https://media.example/foo/range/0-1023?id=5")
        pipeline.stop()
        thread.join(5)

        files = list(tmp_path.glob("DL-test-*"))
        assert errors == []
        assert len(files) == 1
        assert files[0].read_bytes() == payload

    def test_lost_stream_is_fatal(self, tmp_path, fake_session):
        pipeline, runner = _pipeline(tmp_path, fake_session)
        thread, errors = _run_in_thread(pipeline)
        assert fake_session.subscribed.wait(5)

        fake_session.emit_response("https://media.example/x/range/0-9?id=1")
        fake_session.close()
        thread.join(5)

        assert len(errors) == 1
        assert isinstance(errors[0], EventStreamError)
        assert [j.source_url for j in runner.jobs] == ["https://media.example?id=1"]
        assert fake_session.disconnected

    def test_failed_download_is_not_fatal(self, tmp_path, fake_session):
        client = httpx.Client(transport=httpx.MockTransport(lambda req: httpx.Response(503)))
        pipeline, _ = _pipeline(tmp_path, fake_session, runner=Downloader(client=client))
        thread, errors = _run_in_thread(pipeline)
        assert fake_session.subscribed.wait(5)

        fake_session.emit_response("https://media.example/x/range/0-9?id=1")
        fake_session.emit_response("https://media.example/x/range/0-9?id=2")
        pipeline.stop()
        thread.join(5)

        assert errors == []
        assert pipeline.dispatcher.stats.failed == 2

    def test_bootstrap_failure_is_fatal(self, tmp_path, fake_session):
        pipeline, _ = _pipeline(tmp_path, fake_session)
        pipeline.connector = FakeConnector(fake_session, bootstrap_error=BootstrapError("nope"))

        with pytest.raises(BootstrapError):
            pipeline.run()
        assert fake_session.disconnected

    def test_stop_before_run(self, tmp_path, fake_session):
        pipeline, runner = _pipeline(tmp_path, fake_session)
        pipeline.stop()
        pipeline.run()

        assert runner.jobs == []
        assert fake_session.commands == []
        assert not pipeline.connector.bootstrapped
        assert fake_session.disconnected

    def test_stop_while_connecting(self, tmp_path, fake_session):
        class SlowConnector(FakeConnector):
            def connect(self, cancel=None):
                pipeline.stop()
                return self.session

        pipeline, _ = _pipeline(tmp_path, fake_session)
        pipeline.connector = SlowConnector(fake_session)

        pipeline.run()

        assert fake_session.commands == []
        assert not pipeline.connector.bootstrapped
        assert fake_session.disconnected

    def test_stop_while_enabling_events(self, tmp_path, fake_session):
        pipeline, _ = _pipeline(tmp_path, fake_session)
        enable = fake_session.execute

        def execute(method, params=None, timeout=None):
            result = enable(method, params, timeout)
            pipeline.stop()
            return result

        fake_session.execute = execute
        pipeline.run()

        assert fake_session.commands == [("Network.enable", None)]
        assert not pipeline.connector.bootstrapped
        assert fake_session.disconnected

    def test_enable_timeout_is_fatal(self, tmp_path, fake_session):
        pipeline, _ = _pipeline(tmp_path, fake_session)

        def execute(method, params=None, timeout=None):
            raise TimeoutError(f"Command {method} timed out")

        fake_session.execute = execute

        with pytest.raises(EventStreamError):
            pipeline.run()
        assert not pipeline.connector.bootstrapped
        assert fake_session.disconnected

    def test_cancelled_connect_propagates(self, tmp_path):
        class CancelledConnector(FakeConnector):
            def connect(self, cancel=None):
                raise ConnectCancelledError("Connect cancelled")

        pipeline, _ = _pipeline(tmp_path, FakeSession())
        pipeline.connector = CancelledConnector(None)

        with pytest.raises(ConnectCancelledError):
            pipeline.run()

    def test_default_wiring(self, tmp_path):
        pipeline = CapturePipeline(CaptureConfig(output_dir=str(tmp_path), workers=3, queue_size=7, prefix="X-"))

        assert pipeline.dispatcher.workers == 3
        assert pipeline.dispatcher.on_outcome is not None
        assert pipeline.namer.prefix == "X-"
        assert pipeline.connector.endpoint == "http://127.0.0.1:9222"
