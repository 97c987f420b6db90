"""Core utilities for the Chatter backend."""
