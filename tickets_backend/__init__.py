"""Backend utilities for the ticket generator.

This package intentionally keeps FastAPI route handlers thin:
- upload sanitization (size, sniffed type, full re-encode)
- temporary store lifecycle + stale file cleanup
- fixed-layout ticket composition and PDF rendering

Security note:
Uploaded bytes are never written to disk. Only pixels re-encoded by Pillow
land in the temporary store, under names generated by the server. Never log
file contents or expose store paths in responses.
"""
