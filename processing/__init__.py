"""
Livetrack Processing Package

Track merging, event classification, chat notifications and the fetch
scheduler that ties them together.
"""
