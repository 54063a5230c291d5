"""
Authentication package for the SideQuest session client.

This package contains the encrypted-at-rest session snapshot storage and the
token manager that keeps the access token valid through refresh.
"""
