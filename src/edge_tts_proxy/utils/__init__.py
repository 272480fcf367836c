"""
Utility Modules.

    - text.py: Text cleaning pipeline run before chunking
    - timeit.py: Stage timing context manager
"""
