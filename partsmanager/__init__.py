"""
PartsManager sync backend.

This package provides the local-first synchronization core of PartsManager
Pro: scan pairing between mobile and desktop clients, the push/pull sync
workers, the optimistic stock transaction and the trash lifecycle, exposed
through a FastAPI application.
"""
