"""Error classification, aggregation and recovery for the oasgen OpenAPI-to-Next.js generator."""

__version__ = "0.1.0"
