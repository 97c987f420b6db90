"""Chatter backend application."""
