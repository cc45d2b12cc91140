"""
Channel adapters.

Shared-bot channels (WhatsApp, Discord, iMessage, the shared Telegram bot)
arrive through the gateway webhook; dedicated per-agent Telegram bots are
handled by the adapter in this package.
"""
