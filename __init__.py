"""
forestscore

Scores feature sets against decision forests decoded from PMML documents.
Each tree is walked from root to leaf by evaluating typed node predicates,
and leaf values are tallied into per-label votes that can be read as a
probability, sequentially or with trees walked on a thread pool.
"""
