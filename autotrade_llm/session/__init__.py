"""
Session module - orchestrator, per-session context and market scheduler
"""
