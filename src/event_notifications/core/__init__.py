"""Event dispatch engine: emitter, router, retry executor, result store and job processor."""
