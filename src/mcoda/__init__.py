"""Runtime core for the mcoda agent workflow CLI."""

__version__ = "0.4.0"
