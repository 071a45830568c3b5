"""
BloodLink realtime core: chat sessions, conversation list and donor alert matching
"""
__version__ = "0.1.0"
