"""Reservations app package.

Holds the reservation model and its lifecycle/settlement state
machine. Reservations are created by the booking flow and afterwards
change state only through the payment reconciliation coordinator in
``apps.finances``.
"""
