"""
Policy domain package.

Flat value types (rules, grants, decisions, cache keys, audit records),
resource pattern matching and rule condition evaluation shared by every
other component of the decision engine.
"""
