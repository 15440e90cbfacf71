"""
Policy Authorization Decision Engine service.
"""
