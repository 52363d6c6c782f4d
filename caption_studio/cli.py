"""Command-line interface for Caption Studio.

WHY: Operators need the same workflows as the web client without a
browser: re-segment a saved recognition response, caption a local video,
render a captioned video on the local machine, or start the API server.

HOW: argparse subcommands.
  segment   - offline: recognition response / word list JSON → captions JSON
  captions  - video → audio → storage → speech → captions JSON
  render    - video + captions JSON → captioned video, progress on stderr
  serve     - run the FastAPI app with uvicorn
Captions JSON is written to stdout unless --output is given.

RULES:
- Status output goes to stderr (not stdout), so stdout can be piped
- Exit code 1 on errors, 130 on Ctrl-C
- Captions JSON accepts a list of segments or {"captions": [...]}
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import tempfile
import uuid
from pathlib import Path
from typing import List, Optional

from caption_studio.config import (
    CAPTION_MAX_WORDS,
    CAPTION_SILENCE_GAP_S,
    RENDER_FPS,
    ConfigurationError,
    initialize_google_credentials,
    validate_google_cloud_config,
)
from caption_studio.core.ir import CaptionSegment, CaptionStyle, TranscribedPassage, WordInfo
from caption_studio.core.progress import ProgressStore, RenderProgressTracker
from caption_studio.core.segmenter import segment_passages, validate_words
from caption_studio.speech.models import Operation, passages_from_response


def _status(msg: str) -> None:
    """Print a status message to stderr."""
    print(msg, file=sys.stderr, flush=True)


def _fail(msg: str) -> None:
    print("Error: {}".format(msg), file=sys.stderr)
    sys.exit(1)


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------


def load_passages(data) -> List[TranscribedPassage]:
    """Read recognition output in any of the shapes we save.

    RULES:
    - list of {word, startTime, endTime} → one passage
    - {"results": [...]} → recognize response
    - {"name", "done", "response": {...}} → finished operation
    """
    if isinstance(data, list):
        words = [WordInfo.from_dict(w) for w in data]
        return [TranscribedPassage(transcript=" ".join(w.word for w in words), words=words)]
    if isinstance(data, dict) and "response" in data:
        return [r.to_passage() for r in Operation.from_dict(data).results]
    if isinstance(data, dict) and "results" in data:
        return passages_from_response(data)
    raise ValueError("Unrecognised recognition JSON: expected a word list or a response object")


def load_captions(path: Path) -> List[CaptionSegment]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("captions")
    if not isinstance(data, list):
        raise ValueError("{} does not contain a caption list".format(path))
    return [CaptionSegment.from_dict(item) for item in data]


def _write_captions(segments: List[CaptionSegment], output: Optional[str]) -> None:
    text = json.dumps([s.to_dict() for s in segments], indent=2, ensure_ascii=False)
    if output:
        Path(output).write_text(text + "\n", encoding="utf-8")
        _status("Saved {} caption(s) to {}".format(len(segments), output))
    else:
        print(text)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_segment(args: argparse.Namespace) -> None:
    data = json.loads(Path(args.input).read_text(encoding="utf-8"))
    passages = load_passages(data)
    for passage in passages:
        validate_words(passage.words)
    segments = segment_passages(passages, args.max_words, args.max_gap)
    _write_captions(segments, args.output)


async def _caption_video(video: Path) -> List[CaptionSegment]:
    from caption_studio.media.storage import VideoStorage
    from caption_studio.server.pipeline import captions_for_video

    with tempfile.TemporaryDirectory(prefix="caption_cli_") as tmp:
        return await captions_for_video(video, VideoStorage(), Path(tmp), on_status=_status)


def cmd_captions(args: argparse.Namespace) -> None:
    video = Path(args.video)
    if not video.is_file():
        _fail("File not found: {}".format(video))
    initialize_google_credentials()
    validate_google_cloud_config()
    _status("Captioning {}...".format(video.name))
    segments = asyncio.run(_caption_video(video))
    _write_captions(segments, args.output)


def cmd_render(args: argparse.Namespace) -> None:
    from caption_studio.render.engine import CaptionRenderer

    video = Path(args.video)
    if not video.is_file():
        _fail("File not found: {}".format(video))
    captions = load_captions(Path(args.captions))
    style = CaptionStyle.parse(args.style)
    output = Path(args.output) if args.output else video.with_name(video.stem + "-captioned.mp4")

    def on_publish(percent: int) -> None:
        _status("  Progress: {}%".format(percent))

    with tempfile.TemporaryDirectory(prefix="caption_progress_") as tmp:
        tracker = RenderProgressTracker(
            ProgressStore(Path(tmp)), "cli-" + uuid.uuid4().hex[:8], on_publish=on_publish
        )
        _status("Rendering {} caption(s) in style {}...".format(len(captions), style.value))
        tracker.start()
        try:
            CaptionRenderer(fps=args.fps).render(
                video, captions, style, output,
                on_bundling_progress=tracker.on_bundling_progress,
                on_rendering_progress=tracker.on_rendering_progress,
            )
        except BaseException:
            tracker.fail()
            raise
        tracker.complete()
    _status("Done! Saved {}".format(output))


def cmd_serve(args: argparse.Namespace) -> None:
    import uvicorn
    from caption_studio.server.app import app

    uvicorn.run(app, host=args.host, port=args.port)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser (separate from main() for tests)."""
    parser = argparse.ArgumentParser(
        prog="caption-studio",
        description="Generate timed captions from speech and burn them into videos.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log pipeline details to stderr.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    seg = sub.add_parser("segment", help="Build captions from saved recognition JSON.")
    seg.add_argument("input", help="Recognition response, operation, or word list JSON file.")
    seg.add_argument(
        "--max-words", type=int, default=CAPTION_MAX_WORDS,
        help="Maximum words per caption (default: %(default)s).",
    )
    seg.add_argument(
        "--max-gap", type=float, default=CAPTION_SILENCE_GAP_S,
        help="Silence in seconds that starts a new caption (default: %(default)s).",
    )
    seg.add_argument("-o", "--output", default=None, help="Write captions JSON here instead of stdout.")
    seg.set_defaults(func=cmd_segment)

    cap = sub.add_parser("captions", help="Transcribe a video into captions JSON.")
    cap.add_argument("video", help="Path to the video file.")
    cap.add_argument("-o", "--output", default=None, help="Write captions JSON here instead of stdout.")
    cap.set_defaults(func=cmd_captions)

    ren = sub.add_parser("render", help="Burn captions into a video.")
    ren.add_argument("video", help="Path to the source video.")
    ren.add_argument("captions", help="Captions JSON file.")
    ren.add_argument(
        "--style", default=CaptionStyle.BOTTOM_CENTERED.value,
        help="bottom-centered, top-bar or karaoke (default: %(default)s).",
    )
    ren.add_argument("-o", "--output", default=None, help="Output path (default: <video>-captioned.mp4).")
    ren.add_argument("--fps", type=int, default=RENDER_FPS, help="Output frame rate (default: %(default)s).")
    ren.set_defaults(func=cmd_render)

    srv = sub.add_parser("serve", help="Run the HTTP API.")
    srv.add_argument("--host", default="0.0.0.0", help="Bind address (default: %(default)s).")
    srv.add_argument("--port", type=int, default=8000, help="Port (default: %(default)s).")
    srv.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the caption-studio console script.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    try:
        args.func(args)
    except KeyboardInterrupt:
        _status("\nCancelled by user.")
        sys.exit(130)
    except ConfigurationError as e:
        _fail(str(e))
    except Exception as e:
        logging.getLogger(__name__).debug("Command failed", exc_info=True)
        _fail(str(e))


if __name__ == "__main__":
    main()
