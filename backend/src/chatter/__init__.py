"""Chatter realtime coordination package."""
