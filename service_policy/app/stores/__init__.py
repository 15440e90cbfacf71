"""
Rule and grant stores.

The stores are the system of record the engine reads on a cache miss.
Their methods are coroutines so that the engine can bound every read with
a timeout; persistence backends keep the same interface.
"""
