from dataclasses import dataclass

PRIORITY_LEVELS = ("URGENT", "HIGH", "MEDIUM", "LOW")


@dataclass
class CallerInfo:
    name: str
    number: str
    priority: str = "MEDIUM"

    # Optional routing details
    id: str = ""
    location: str = ""
    account_number: str = ""
    account_id: str = ""
    issue_category: str = ""
    issue_description: str = ""

    def __post_init__(self):
        self.priority = (self.priority or "MEDIUM").upper()
        if self.priority not in PRIORITY_LEVELS:
            self.priority = "MEDIUM"

    @classmethod
    def from_payload(cls, data: dict) -> "CallerInfo":
        return cls(
            name=str(data.get("name") or "Unknown"),
            number=str(data.get("number") or data.get("phone") or ""),
            priority=str(data.get("priority") or "MEDIUM"),
            id=str(data.get("id") or ""),
            location=str(data.get("location") or ""),
            account_number=str(data.get("accountNumber") or ""),
            account_id=str(data.get("accountId") or ""),
            issue_category=str(data.get("issueCategory") or ""),
            issue_description=str(data.get("issueDescription") or ""),
        )

    def to_payload(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "number": self.number,
            "priority": self.priority,
            "location": self.location,
            "accountNumber": self.account_number,
            "accountId": self.account_id,
            "issueCategory": self.issue_category,
            "issueDescription": self.issue_description,
        }


@dataclass
class Session:
    """One live connection for an (agent, caller) pair."""

    agent_id: str
    caller_id: str
    url: str
    port: int | None = None

    # Set by ConnectionManager as the session progresses
    opened_at: float = 0.0
    messages_received: int = 0
    messages_sent: int = 0
