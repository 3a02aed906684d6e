"""
Adapter implementations for the transit graph cache.

Adapters are concrete implementations of the port interfaces.
They handle the specifics of the routing engine and on-disk state.
"""
