"""
vibe-server package.

Design intent:
- Serve one transcription model to many HTTP clients through polled jobs.
- Keep engine adapters (internal_core/asr) independent from the API layer.
"""
