import argparse
import logging
import sys

from phoneframe.codecs import FFmpegCapabilityProbe
from phoneframe.config import AppConfig
from phoneframe.diagnostics import print_env_diagnostics
from phoneframe.errors import ExportError
from phoneframe.exporter import Exporter
from phoneframe.io_video import VideoFileSource
from phoneframe.sinks import ConsoleProgress, FileDownloadSink
from phoneframe.stats import Timer


def parse_args(argv=None):
    ap = argparse.ArgumentParser(description="Overlay a video inside an animated phone frame (4:3).")
    ap.add_argument("video", help="source video file")
    ap.add_argument("--out-dir", default=None, help="where the export is written")
    ap.add_argument("--realtime", action="store_true", help="pace rendering to the wall clock")
    ap.add_argument("--platform-class", default=None, help="bit-rate class (standard|constrained)")
    ap.add_argument("--fit", choices=("width", "contain"), default=None, help="video fit policy")
    ap.add_argument("--brand", default=None, help="watermark text")
    ap.add_argument("--quiet", action="store_true")
    return ap.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    cfg = AppConfig.default()
    cfg.apply_env()
    cfg.paths.video_path = args.video
    cfg.verbose = not args.quiet
    if args.out_dir:
        cfg.paths.out_dir = args.out_dir
    if args.platform_class:
        cfg.encode.platform_class = args.platform_class
    if args.fit:
        cfg.render.fit_policy = args.fit
    if args.brand is not None:
        cfg.render.brand_text = args.brand
    cfg.render.realtime = args.realtime
    cfg.validate()

    logging.basicConfig(
        level=logging.INFO if cfg.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    probe = FFmpegCapabilityProbe(cfg.encode.ffmpeg_bin)
    print_env_diagnostics(cfg, probe)

    sink = FileDownloadSink(cfg.paths.out_dir)
    exporter = Exporter(
        cfg,
        probe=probe,
        sink=sink,
        progress=ConsoleProgress() if cfg.verbose else None,
    )

    try:
        with Timer("source open", verbose=cfg.verbose):
            source = VideoFileSource(cfg.paths.video_path)
    except ExportError as exc:
        print(f"❌ {exc.kind}: {exc}", file=sys.stderr)
        return 1

    try:
        with Timer("export", verbose=cfg.verbose):
            session = exporter.run(source)
    except KeyboardInterrupt:
        exporter.cancel()
        session = exporter.session
        if session is None:
            return 130
        if not session.terminal:
            exporter.wait(session)
    finally:
        source.close()

    if session.error is not None:
        print(f"❌ {session.error.kind}: {session.error}", file=sys.stderr)
        return 1

    artifact = session.artifact
    print(f"✅ FINAL OK → {sink.paths[-1]} ({artifact.duration_ms / 1000:.2f}s, {artifact.mime_type})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
