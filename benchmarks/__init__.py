"""Performance benchmarks for termopt.

This package contains microbenchmarks for hot paths in the library,
including gradient and Hessian assembly across thread counts.
"""
