"""Finances app package.

Payments, fee calculation and reconciliation of payments against
reservations. Xendit invoices are created here at checkout and their
webhooks are ingested here as well.
"""
