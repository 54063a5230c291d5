"""
Shared components for the SideQuest session client.

This package contains the data models, exception hierarchy, transport
interface and logging configuration used by the client package.
"""
