"""
Data models for bounce report analysis.

A report arrives as a list of parts: part 0 carries the header mapping,
parts 1..n carry decoded text. Everything here is request scoped.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple


@dataclass(frozen=True)
class ReportPart:
    """
    One segment of a decomposed bounce message.

    Attributes:
        data: Header mapping for the first part, raw text for the others
        charset: Encoding the upstream decoder used to produce data
    """
    data: Any
    charset: str = ""

    @classmethod
    def coerce(cls, value: Any) -> Optional["ReportPart"]:
        """Accept a ReportPart or a ``{"data": ..., "charset": ...}`` dict."""
        if isinstance(value, ReportPart):
            return value
        if isinstance(value, Mapping) and "data" in value:
            return cls(data=value["data"], charset=value.get("charset") or "")
        return None

    def as_text(self) -> str:
        if isinstance(self.data, str):
            return self.data
        if isinstance(self.data, (bytes, bytearray)):
            try:
                return bytes(self.data).decode(self.charset or "utf-8", errors="ignore")
            except LookupError:
                return bytes(self.data).decode("utf-8", errors="ignore")
        return ""

    def to_dict(self) -> Dict[str, Any]:
        data = self.data
        if isinstance(data, Mapping):
            data = dict(data)
        elif not isinstance(data, str):
            data = self.as_text()
        return {"data": data, "charset": self.charset}


class Headers:
    """Read-only header mapping with lower-cased names; values untouched."""

    def __init__(self, raw: Mapping[str, Any]):
        self._values: Dict[str, str] = {}
        for name, value in raw.items():
            self._values[str(name).lower()] = "" if value is None else str(value)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self._values.get(name.lower(), default)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Headers({self._values!r})"


@dataclass(frozen=True)
class Report:
    """
    A bounce report split into its header part and ordered body parts.

    Attributes:
        headers: Normalized headers of the bounce
        parts: Body/attachment texts, in message order
    """
    headers: Headers
    parts: Tuple[str, ...]

    @classmethod
    def from_parts(cls, report_parts: Any) -> Optional["Report"]:
        """
        Build a Report from the decoder's part list.

        Returns None when the input is not a list of at least two parts
        or when the first part does not carry a header mapping.
        """
        if not isinstance(report_parts, (list, tuple)) or len(report_parts) < 2:
            return None

        parts = [ReportPart.coerce(p) for p in report_parts]
        if any(p is None for p in parts):
            return None

        head, body = parts[0], parts[1:]
        if not isinstance(head.data, Mapping):
            return None

        return cls(
            headers=Headers(head.data),
            parts=tuple(p.as_text() for p in body),
        )


@dataclass(frozen=True)
class Analysis:
    """
    Result of analyzing one report.

    Empty strings mean "undetermined", not an error.
    """
    header_id: str = ""
    code: str = ""
    mail: str = ""

    @property
    def is_complete(self) -> bool:
        """Only complete analyses are worth persisting."""
        return bool(self.code and self.mail)

    def to_dict(self) -> Dict[str, str]:
        return {"header_id": self.header_id, "code": self.code, "mail": self.mail}


@dataclass(frozen=True)
class Resolution:
    header_id: str = ""
    mail: str = ""


class SentMailIndex(Protocol):
    """
    Read-only view of the mail this system has sent.

    Implementations should raise SentMailLookupError when the backing
    store fails. The resolver treats any exception from either method as
    "nothing found" for that query and carries on with the analysis.

    lookup: recipients recorded under a correlation identifier
    recently_sent_to: how many times the address was mailed since a
        timezone-aware timestamp
    """

    def lookup(self, identifier: str) -> Sequence[str]:
        ...

    def recently_sent_to(self, address: str, since: datetime) -> int:
        ...


@dataclass
class InMemorySentMailIndex:
    """
    Dict-backed SentMailIndex, handy for tests and one-off scripts.

    Attributes:
        sent: identifier -> list of recipient addresses
        sent_at: address (lower case) -> list of send timestamps
    """
    sent: Dict[str, List[str]] = field(default_factory=dict)
    sent_at: Dict[str, List[datetime]] = field(default_factory=dict)

    def record(self, identifier: str, address: str, when: datetime) -> None:
        self.sent.setdefault(identifier, []).append(address)
        self.sent_at.setdefault(address.lower(), []).append(when)

    def lookup(self, identifier: str) -> List[str]:
        return list(self.sent.get(identifier, []))

    def recently_sent_to(self, address: str, since: datetime) -> int:
        return sum(1 for when in self.sent_at.get(address.lower(), []) if when >= since)
