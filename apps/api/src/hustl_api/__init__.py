"""Hustl points ledger service."""
