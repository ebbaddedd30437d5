"""
MiniDoc Indexing Module
=======================
In-memory sorted indexes for accelerating queries.

Components:
  - key_encoding: Order-preserving byte encoding with per-field direction
  - index: Sorted (key, seq, _id) entries with unique checks and range scans
  - registry: Index lifecycle (declare, drop), maintenance, plan_for()
"""
