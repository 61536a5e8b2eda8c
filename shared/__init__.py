"""
Shared Kernel

Base classes and utilities shared by the reservation and finance contexts:
domain events, the error taxonomy, the unit of work and the message bus.
"""
