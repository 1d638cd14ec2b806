"""
Data handling for changepoint-jax.

Summarizes observations into the constants a compiled model needs and
assembles sampler data.
"""

from .summary import DataSummary, summarize_data, build_sampler_data, encode_groups

__all__ = [
    "DataSummary",
    "summarize_data",
    "build_sampler_data",
    "encode_groups",
]
