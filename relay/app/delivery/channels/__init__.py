"""
channels — Per-transport delivery backends.

Each channel module exposes:
    async send(text, destination, credential, *, client, base_url,
               timeout_seconds) → bool

Channels are stateless functions. Ordering and fallback live in the
orchestrator: bot_api → query_string → beacon.
"""
