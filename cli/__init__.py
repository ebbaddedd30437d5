"""
MiniDoc Console Demo
====================
Session, renderer and the bookstore task script behind main.py.
"""
