"""Rate limiting adapters.

The admission services talk to ``AbstractWindowStore``; the in-process
sharded store is the only implementation today.
"""
