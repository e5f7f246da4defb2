"""
Result of a processing function.

Processing functions classify their own failures and return the
classification as a value; the worker pool acts on ``kind`` alone.
"""

from pydantic import BaseModel

from assetpipe.constants import ResultKind


class ProcessResult(BaseModel):
    """
    Tagged outcome of one processing invocation.

    On success ``result_key`` names the output artifact. When ``output`` is
    set the worker pool writes it to the object store under ``result_key``;
    otherwise the processing function has already written it.
    """

    kind: ResultKind
    result_key: str | None = None
    output: bytes | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.kind == ResultKind.SUCCEEDED

    @classmethod
    def success(cls, result_key: str, output: bytes | None = None) -> "ProcessResult":
        return cls(kind=ResultKind.SUCCEEDED, result_key=result_key, output=output)

    @classmethod
    def transient(cls, error: str) -> "ProcessResult":
        return cls(kind=ResultKind.TRANSIENT, error=error)

    @classmethod
    def permanent(cls, error: str) -> "ProcessResult":
        return cls(kind=ResultKind.PERMANENT, error=error)

    @classmethod
    def unknown(cls, error: str) -> "ProcessResult":
        return cls(kind=ResultKind.UNKNOWN, error=error)
