"""Reconciliation engine and result models."""
