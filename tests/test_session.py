import pytest

from phoneframe.errors import (
    CaptureUnavailable,
    EncoderFault,
    NoSourceLoaded,
    NoSupportedCodec,
    SessionBusy,
)
from phoneframe.exporter import Exporter
from phoneframe.session import effective_duration_ms
from phoneframe.types import SessionState

from conftest import FakeCapture, FakeCaptureFactory, FakeSource, StubCompositor, probe_for


FRAME_MS = 1000.0 / 30


def make_exporter(cfg, scheduler, capture_factory, sink, probe=None, **kwargs):
    kwargs.setdefault("compositor", StubCompositor())
    return Exporter(
        cfg,
        probe=probe or probe_for("video/mp4"),
        capture_factory=capture_factory,
        sink=sink,
        scheduler=scheduler,
        **kwargs,
    )


def test_end_to_end_completes(cfg, scheduler, source, capture_factory, sink):
    exporter = make_exporter(cfg, scheduler, capture_factory, sink)
    session = exporter.run(source)

    assert session.state is SessionState.COMPLETED
    artifact = session.result()
    assert len(artifact) > 0
    assert artifact.duration_ms == pytest.approx(10_000, abs=FRAME_MS)
    assert artifact.mime_type == "video/mp4"
    assert sink.calls == [(artifact, "phone-frame-4x3.mp4")]
    assert capture_factory.created[0].closed
    assert session.target is None


def test_artifact_preserves_chunk_order(cfg, scheduler, source, capture_factory, sink):
    session = make_exporter(cfg, scheduler, capture_factory, sink).run(source)
    n = session.frames
    expected = b"HEAD" + b"".join(i.to_bytes(4, "big") for i in range(1, n + 1)) + b"TAIL"
    assert session.artifact.data == expected


def test_no_supported_codec_fails_before_capture(cfg, scheduler, source, capture_factory, sink):
    failures = []
    exporter = make_exporter(cfg, scheduler, capture_factory, sink, probe=probe_for(), on_failure=failures.append)
    session = exporter.run(source)

    assert session.state is SessionState.FAILED
    assert isinstance(session.error, NoSupportedCodec)
    assert session.error.kind == "NoSupportedCodec"
    assert capture_factory.created == []
    assert session.chunks == []
    assert sink.calls == []
    assert failures == [session.error]
    with pytest.raises(NoSupportedCodec):
        session.result()


def test_second_preference_selected_when_first_unsupported(cfg, scheduler, source, capture_factory, sink):
    probe = probe_for("video/webm;codecs=vp9")
    session = make_exporter(cfg, scheduler, capture_factory, sink, probe=probe).run(source)

    assert session.codec.mime_type == "video/webm;codecs=vp9"
    assert capture_factory.created[0].request.codec.mime_type == "video/webm;codecs=vp9"
    assert probe.calls[:2] == ["video/mp4", "video/webm;codecs=vp9"]
    assert sink.calls[0][1] == "phone-frame-4x3.webm"


def test_bitrate_follows_platform_class(cfg, scheduler, source, capture_factory, sink):
    cfg.encode.platform_class = "constrained"
    session = make_exporter(cfg, scheduler, capture_factory, sink).run(source)
    standard = cfg.encode.bitrates["standard"]
    assert capture_factory.created[0].request.bitrate == session.bitrate
    assert session.bitrate < standard * 0.6


def test_cancel_after_two_seconds(cfg, scheduler, source, capture_factory, sink):
    exporter = make_exporter(cfg, scheduler, capture_factory, sink)
    session = exporter.export(source)
    scheduler.call_later(2.0, exporter.cancel)
    exporter.wait(session)

    assert session.state is SessionState.COMPLETED
    assert session.artifact.duration_ms == pytest.approx(2_000, abs=FRAME_MS)

    exporter.cancel()
    session.cancel()
    assert session.state is SessionState.COMPLETED
    assert len(sink.calls) == 1
    assert capture_factory.created[0].stop_calls == 1


def test_busy_while_recording(cfg, scheduler, source, capture_factory, sink):
    exporter = make_exporter(cfg, scheduler, capture_factory, sink)
    first = exporter.export(source)
    assert first.state is SessionState.RECORDING

    with pytest.raises(SessionBusy):
        exporter.export(FakeSource())
    assert exporter.active is first
    assert first.state is SessionState.RECORDING
    assert len(capture_factory.created) == 1

    exporter.wait(first)
    assert first.state is SessionState.COMPLETED

    second = exporter.run(FakeSource(duration_ms=1_000))
    assert second.state is SessionState.COMPLETED


def test_busy_while_finalizing(cfg, scheduler, source, sink):
    factory = FakeCaptureFactory(flush_on_stop=False)
    exporter = make_exporter(cfg, scheduler, factory, sink)
    session = exporter.export(source)
    session.cancel()
    assert session.state is SessionState.FINALIZING

    with pytest.raises(SessionBusy):
        exporter.export(FakeSource())

    # stop while finalizing is a no-op
    session.request_stop("duration")
    assert factory.created[0].stop_calls == 1

    factory.created[0].flush()
    exporter.wait(session)
    assert session.state is SessionState.COMPLETED


def test_export_without_source(cfg, scheduler, capture_factory, sink):
    exporter = make_exporter(cfg, scheduler, capture_factory, sink)
    with pytest.raises(NoSourceLoaded):
        exporter.export(None)
    assert exporter.session is None


def test_duration_policy():
    from phoneframe.config import EncodeConfig

    enc = EncodeConfig()
    assert effective_duration_ms(120_000, enc) == 60_000
    assert effective_duration_ms(None, enc) == 30_000
    assert effective_duration_ms(float("nan"), enc) == 30_000
    assert effective_duration_ms(10_000, enc) == 10_000


def test_long_source_is_capped(cfg, scheduler, capture_factory, sink):
    session = make_exporter(cfg, scheduler, capture_factory, sink).run(FakeSource(duration_ms=120_000))
    assert session.target_duration_ms == 60_000
    assert session.artifact.duration_ms == pytest.approx(60_000, abs=FRAME_MS)


def test_unknown_duration_defaults(cfg, scheduler, capture_factory, sink):
    session = make_exporter(cfg, scheduler, capture_factory, sink).run(FakeSource(duration_ms=None))
    assert session.target_duration_ms == 30_000
    assert session.artifact.duration_ms == pytest.approx(30_000, abs=FRAME_MS)


def test_late_chunks_after_flush_are_ignored(cfg, scheduler, source, sink):
    class LateCapture(FakeCapture):
        def flush(self):
            self.on_chunk(b"LAST")
            self.on_flushed()
            self.on_chunk(b"LATE")

    factory = FakeCaptureFactory(LateCapture)
    session = make_exporter(cfg, scheduler, factory, sink).run(source)
    assert session.artifact.data.endswith(b"LAST")
    assert b"LATE" not in session.artifact.data


def test_encoder_fault_mid_recording(cfg, scheduler, source, sink):
    class BrokenCapture(FakeCapture):
        def push_frame(self, frame):
            super().push_frame(frame)
            if self.frames == 10:
                raise EncoderFault("pipe closed")

    failures = []
    factory = FakeCaptureFactory(BrokenCapture)
    session = make_exporter(cfg, scheduler, factory, sink, on_failure=failures.append).run(source)

    assert session.state is SessionState.FAILED
    assert isinstance(session.error, EncoderFault)
    assert factory.created[0].closed
    assert session.artifact is None
    assert sink.calls == []
    assert len(failures) == 1


def test_encoder_error_callback_fails_session(cfg, scheduler, source, sink):
    class ErroringCapture(FakeCapture):
        def push_frame(self, frame):
            super().push_frame(frame)
            if self.frames == 5:
                self.on_error(EncoderFault("exit 1"))

    factory = FakeCaptureFactory(ErroringCapture)
    session = make_exporter(cfg, scheduler, factory, sink).run(source)
    assert session.state is SessionState.FAILED
    assert session.frames < 10
    assert factory.created[0].closed


def test_empty_output_is_a_fault(cfg, scheduler, source, sink):
    class SilentCapture(FakeCapture):
        def __init__(self, request, on_chunk, on_flushed, on_error):
            super().__init__(request, lambda data: None, on_flushed, on_error)

        def flush(self):
            self.on_flushed()

    session = make_exporter(cfg, scheduler, FakeCaptureFactory(SilentCapture), sink).run(source)
    assert session.state is SessionState.FAILED
    assert isinstance(session.error, EncoderFault)
    assert sink.calls == []


def test_stream_ending_early_is_a_fault(cfg, scheduler, source, sink):
    class QuitterCapture(FakeCapture):
        def push_frame(self, frame):
            super().push_frame(frame)
            if self.frames == 3:
                self.on_flushed()

    session = make_exporter(cfg, scheduler, FakeCaptureFactory(QuitterCapture), sink).run(source)
    assert session.state is SessionState.FAILED
    assert isinstance(session.error, EncoderFault)


def test_capture_unavailable(cfg, scheduler, source, sink):
    def factory(request, on_chunk, on_flushed, on_error):
        raise CaptureUnavailable("no ffmpeg")

    session = make_exporter(cfg, scheduler, factory, sink).run(source)
    assert session.state is SessionState.FAILED
    assert session.error.kind == "CaptureUnavailable"


def test_unknown_platform_class_fails_and_frees_the_exporter(cfg, scheduler, source, capture_factory, sink):
    failures = []
    cfg.encode.platform_class = "mobile"
    exporter = make_exporter(cfg, scheduler, capture_factory, sink, on_failure=failures.append)
    first = exporter.export(source)

    assert first.state is SessionState.FAILED
    assert isinstance(first.error, EncoderFault)
    assert failures == [first.error]
    assert capture_factory.created == []
    assert exporter.active is None

    cfg.encode.platform_class = "standard"
    second = exporter.run(FakeSource(duration_ms=1_000))
    assert second.state is SessionState.COMPLETED


def test_probe_error_fails_the_session(cfg, scheduler, source, capture_factory, sink):
    def probe(mime):
        raise RuntimeError("probe crashed")

    exporter = make_exporter(cfg, scheduler, capture_factory, sink, probe=probe)
    session = exporter.export(source)
    assert session.state is SessionState.FAILED
    assert "probe crashed" in str(session.error)
    assert source.restarts == 0
    assert exporter.active is None


def test_source_restarted_and_played_on_start(cfg, scheduler, source, capture_factory, sink):
    exporter = make_exporter(cfg, scheduler, capture_factory, sink)
    session = exporter.export(source)
    assert source.restarts == 1
    assert source.clock is not None
    assert session.started_at == scheduler.now()
    exporter.wait(session)


def test_transient_read_errors_do_not_abort(cfg, scheduler, capture_factory, sink):
    source = FakeSource(duration_ms=1_000, fail_reads={2, 3, 7})
    session = make_exporter(cfg, scheduler, capture_factory, sink).run(source)
    assert session.state is SessionState.COMPLETED
    assert session.frames == 30


def test_progress_is_monotonic_and_clamped(cfg, scheduler, source, capture_factory, sink):
    seen = []
    session = make_exporter(cfg, scheduler, capture_factory, sink, progress=seen.append).run(source)
    # one report per frame plus the closing 1.0
    assert len(seen) == session.frames + 1
    assert seen[0] == 0.0
    assert all(0.0 <= v <= 1.0 for v in seen)
    assert all(a <= b for a, b in zip(seen, seen[1:]))
    assert seen[-2] == pytest.approx(1.0, abs=2 * FRAME_MS / 10_000)
    assert seen[-1] == 1.0


def test_progress_not_closed_on_failure(cfg, scheduler, source, sink):
    class BrokenCapture(FakeCapture):
        def push_frame(self, frame):
            super().push_frame(frame)
            if self.frames == 10:
                raise EncoderFault("pipe closed")

    seen = []
    make_exporter(cfg, scheduler, FakeCaptureFactory(BrokenCapture), sink, progress=seen.append).run(source)
    assert len(seen) == 10
    assert seen[-1] < 1.0


def test_render_rate_is_measured(cfg, scheduler, source, capture_factory, sink):
    exporter = make_exporter(cfg, scheduler, capture_factory, sink)
    session = exporter.run(FakeSource(duration_ms=1_000))
    perf = exporter.render_loop.perf
    assert not perf.running
    assert perf.frames == session.frames == 30
    assert perf.avg_fps() > 0.0


def test_animation_clock_starts_at_zero(cfg, scheduler, source, capture_factory, sink):
    compositor = StubCompositor()
    make_exporter(cfg, scheduler, capture_factory, sink, compositor=compositor).run(source)
    assert compositor.geometries[0].pulse_scale == 1.0
    assert {round(g.pulse_scale, 6) for g in compositor.geometries} != {1.0}
