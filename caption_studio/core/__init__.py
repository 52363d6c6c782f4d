"""Core caption logic: data model, segmentation, selection, progress.

WHY: The core is the part of the system with real behaviour: turning
recognised words into caption segments, deciding what is visible on a
given frame, and mapping renderer progress into a single percentage.
Everything else is orchestration around external services.

HOW: ir.py defines the dataclasses, segmenter.py builds segments from
words, selector.py picks the active segment/word and dispatches on
style, progress.py maps and persists render progress.

RULES:
- No network or media I/O in this package
- segmenter and selector are pure functions, safe to call concurrently
- progress.py touches the filesystem only through ProgressStore
"""
