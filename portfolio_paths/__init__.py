"""Monte Carlo portfolio path explorer - client-side orchestration engine."""

__version__ = "0.1.0"
