"""Multiplayer room lobby service."""
