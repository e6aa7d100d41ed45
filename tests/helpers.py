"""Constants and small fakes shared by the test modules."""

BASE_URL = "https://dnac.test/dna/intent/api/v1"
TOKEN_URL = "https://dnac.test/dna/system/api/v1/auth/token"
ISSUES_URL = "https://dnac.test/dna/data/api/v1/assuranceIssues"
SITE_URL = "https://dnac.test/dna/intent/api/v1/site"
SITE_HEALTH_URL = "https://dnac.test/dna/intent/api/v1/site-health"


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def issue(n: int, **extra: object) -> dict[str, object]:
    """A minimal raw assurance issue record."""
    return {"issueId": f"issue-{n}", "name": f"Issue {n}", "priority": "P2", "timestamp": 1_700_000_000_000 + n} | extra
