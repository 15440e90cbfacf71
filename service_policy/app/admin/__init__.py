"""
Rule and grant administration.
"""
