"""Textual delivery monitor."""
