"""
Decision cache backends, invalidation broadcast and lifecycle listener.
"""
