"""State layer.

This package owns the canonical name -> grid mapping every view reads,
and the session context shared with the sync engine.
"""
