"""Shared helpers for pg-deployer."""
