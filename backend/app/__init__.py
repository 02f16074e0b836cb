"""Bazaar places search backend."""
