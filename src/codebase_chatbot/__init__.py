"""Codebase Chatbot: a chat panel for locally hosted language models."""

__version__ = "0.3.0"
