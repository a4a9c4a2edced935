"""Knowledge-graph backed chunk retrieval for grounded question answering."""

__version__ = "0.1.0"
