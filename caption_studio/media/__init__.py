"""Media I/O: Cloud Storage, ffmpeg audio extraction, video fetching.

RULES:
- Everything here blocks; async callers wrap it in asyncio.to_thread
"""
