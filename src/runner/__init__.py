"""External command execution."""

from .process import ProcessResult, ProcessRunner, classify_failure

__all__ = ["ProcessResult", "ProcessRunner", "classify_failure"]
