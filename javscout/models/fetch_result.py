"""
Fetch Result Model
Outcome of a single HTTP GET; fetchers return it instead of raising
"""
from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass
class FetchResult:
    status_code: int
    body: str = ""
    error: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= int(self.status_code or 0) < 300

    def describe(self) -> str:
        if self.error:
            return self.error
        return f"HTTP {self.status_code}"

    @classmethod
    def failure(cls, error: str) -> "FetchResult":
        return cls(status_code=0, body="", error=error)
