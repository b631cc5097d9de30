"""
Lightweight package marker for internal utils (env readers).
"""
