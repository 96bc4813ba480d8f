"""
Core modules for CCTray.

This package contains the usage model, the ccusage process runner,
error recovery, threshold notifications and the polling loop.
"""
