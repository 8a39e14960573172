"""Rewrite provider implementations."""
