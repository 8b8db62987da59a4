"""
Retention storage layer.

Cutoff calculation, batched deletion with retry, health reporting and the
scheduler that drives cleanup runs against a store.
"""
