"""
MiniDoc Concurrency
===================
Readers/writer lock guarding each collection.
"""
