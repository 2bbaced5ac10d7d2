"""
LLM module - provider-neutral model client and adapters
"""
