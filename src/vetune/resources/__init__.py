"""Bundled resources distributed with vetune."""
