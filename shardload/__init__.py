"""
shardload: resumable, shard-aware bulk loader for delimited text files.
"""

__version__ = "0.4.0"
