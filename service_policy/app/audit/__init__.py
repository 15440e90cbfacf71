"""
Append-only decision audit trail.
"""
