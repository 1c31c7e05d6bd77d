"""Relay: a Telegram bot that streams chat completions into edited messages."""
