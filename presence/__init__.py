"""
Presence resolver - cache-first capability lookup for batches of contacts.
"""
