"""Payload model, validation rules, validator and cross-source comparator."""
