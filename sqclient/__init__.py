"""
SideQuest app session client.

This package implements short code (device code) login against the SideQuest
API, access token refresh, a persistent local session cache and the profile
and achievement synchronization that depends on it.
"""

__version__ = "1.0.0"
