"""chanrelay - a multi-channel WebSocket chat relay.

Clients join named channels under a nickname (optionally with a
password-derived trip) and exchange broadcast text. Every action is
scored by a time-decaying abuse limiter before it runs.
"""

__version__ = "1.0.0"
