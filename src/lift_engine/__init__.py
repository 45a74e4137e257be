"""lift-engine: prescription resolution and progression application for barbell programs."""

__version__ = "0.3.0"
