"""Stack traces, tracing spans, envelope encoding and HTTP transports for error reporting."""

__version__ = "0.1.0"
__all__ = ["envelope", "span", "stacktrace", "tracing_types", "transport", "util"]