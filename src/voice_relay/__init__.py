"""Streaming chat-to-speech relay backend."""
