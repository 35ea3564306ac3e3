"""
Livetrack Backend Package

Dashboard API and the server-sent events broadcaster.
"""
