from __future__ import annotations

from typing import Any, Sequence


class TheiaError(Exception):
    """Base class for theiapipe errors.

    Keyword context is kept in `context` and exposed as attributes.
    """

    _RESERVED_ATTRS = frozenset({"message", "context", "args"})

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        for key, value in context.items():
            if key not in self._RESERVED_ATTRS:
                setattr(self, key, value)
        super().__init__(message)


class TransferError(TheiaError):
    """Download ended with a non-success HTTP outcome."""

    def __init__(self, url: str, status_code: int | None = None, reason: str = "") -> None:
        msg = f"Transfer failed for {url}"
        if status_code is not None:
            msg += f" (HTTP {status_code})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, url=url, status_code=status_code)


class UnexpectedContentError(TheiaError):
    """Server answered with a text payload where an archive was expected."""

    def __init__(self, url: str, content_type: str, excerpt: str = "") -> None:
        super().__init__(
            f"Expected an archive from {url}, got content-type {content_type!r}. "
            f"Response:\n\n{excerpt}",
            url=url,
            content_type=content_type,
            excerpt=excerpt,
        )


class IntegrityMismatchError(TheiaError, UserWarning):
    """Local archive hash differs from the catalog hash.

    Issued through `warnings.warn`: the tile is marked incorrect, the file stays.
    """

    def __init__(self, path: str, expected: str, actual: str) -> None:
        super().__init__(
            f"{path} incorrectly downloaded (md5 {actual}, expected {expected})",
            path=path,
            expected=expected,
            actual=actual,
        )


class UnsupportedOperationError(TheiaError):
    """Operation is not defined for the tile's collection kind."""


class UnknownBandError(TheiaError):
    def __init__(self, bands: Sequence[str]) -> None:
        bands = list(bands)
        super().__init__(
            f"Bands '{', '.join(bands)}' are not available!", bands=bands
        )


class MetadataParseError(TheiaError):
    """Descriptor inside the archive is missing or malformed."""


class CollectionError(TheiaError):
    """One or more members of a collection failed during a batch operation.

    `failures` holds (tile, exception) pairs in member order.
    """

    def __init__(self, operation: str, failures: Sequence[tuple[Any, Exception]]) -> None:
        failures = list(failures)
        lines = [f"{operation} failed for {len(failures)} tile(s):"]
        for tile, exc in failures:
            lines.append(f"  - {getattr(tile, 'name', tile)}: {exc}")
        super().__init__("\n".join(lines), operation=operation, failures=failures)
