"""PRD Genie: turn a raw app idea into a structured PRD and export it."""

__version__ = "0.1.0"
