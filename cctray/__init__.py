"""
CCTray - Claude Code usage monitor.

Polls the ccusage CLI, rotates usage metrics and sends desktop notifications.
"""

__version__ = "0.3.0"
