"""Concrete pipeline stages (one module per content kind) and their catalog."""
