"""Receipt Lira: bill extraction and payment reminders."""

__version__ = "0.1.0"
