"""
Decision engine and request validation.
"""
