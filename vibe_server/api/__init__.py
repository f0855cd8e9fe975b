"""
API orchestration boundary for vibe-server.

Design intent:
- Expose thin, typed endpoints for submit/poll/result and model management.
- Keep request validation explicit and failure modes predictable.
"""
