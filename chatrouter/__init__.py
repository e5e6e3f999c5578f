# FILE: chatrouter/__init__.py
"""
Chat Router

Decision layer between what a human typed into a chat and what the bot
should execute. See chatrouter.routing for the pipeline itself.
"""

__version__ = "0.3.0"
