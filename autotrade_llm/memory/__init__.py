"""
Memory module - persisted conversation threads
"""

from .thread_store import Thread, ThreadItem, ThreadStore, trim_thread, validate_thread

__all__ = ['Thread', 'ThreadItem', 'ThreadStore', 'trim_thread', 'validate_thread']
