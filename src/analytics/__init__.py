"""
Analytics over persisted events: dashboard statistics and explorer filtering.
"""
