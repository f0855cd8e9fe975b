"""
Transcript module boundary for vibe-server.

Design intent:
- Own the public segment/transcript shapes returned to clients.
- Keep rendering (text/SRT/VTT) out of API handlers.
"""
