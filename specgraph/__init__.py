"""specgraph: hybrid retrieval, impact analysis, and task planning over a spec graph."""

__version__ = "0.1.0"
