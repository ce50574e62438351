"""Type definitions for GitHub API responses."""

from typing import Dict, List, Optional, Protocol, Tuple, Union
from pydantic import BaseModel

from ..typing import ChecksStatus, MergeSnapshot, ReviewDecision

MERGE_STATUS_QUERY = """
query MergeStatus($owner: String!, $name: String!, $number: Int!) {
  repository(owner: $owner, name: $name) {
    pullRequest(number: $number) {
      number
      state
      reviewDecision
      baseRefName
      commits(last: 1) {
        nodes {
          commit {
            statusCheckRollup {
              state
            }
          }
        }
      }
    }
  }
}
"""

# GraphQL response types with Pydantic models
class StatusCheckRollup(BaseModel):
    state: str

class StatusCommitNode(BaseModel):
    statusCheckRollup: Optional[StatusCheckRollup] = None

class StatusCommitData(BaseModel):
    commit: StatusCommitNode

class StatusCommits(BaseModel):
    nodes: List[StatusCommitData]

class PRStatusNode(BaseModel):
    number: int
    state: str
    reviewDecision: Optional[str] = None
    baseRefName: str
    commits: StatusCommits

class RepositoryNode(BaseModel):
    pullRequest: Optional[PRStatusNode] = None

class MergeStatusData(BaseModel):
    repository: Optional[RepositoryNode] = None

class GraphQLErrorLocation(BaseModel):
    line: int
    column: int

class GraphQLError(BaseModel):
    message: str
    locations: Optional[List[GraphQLErrorLocation]] = None
    path: Optional[List[Union[str, int]]] = None
    extensions: Optional[Dict[str, object]] = None

class MergeStatusResponse(BaseModel):
    data: Optional[MergeStatusData] = None
    errors: Optional[List[GraphQLError]] = None

# Type for PyGithub GraphQL response
# First element is headers dict, second is the response data
GraphQLResponseType = Tuple[Dict[str, object], Dict[str, object]]

CHECKS_BY_ROLLUP_STATE = {
    "SUCCESS": ChecksStatus.PASSING,
    "PENDING": ChecksStatus.PENDING,
    "EXPECTED": ChecksStatus.PENDING,
    "FAILURE": ChecksStatus.FAILING,
    "ERROR": ChecksStatus.FAILING,
}

REVIEW_BY_DECISION = {
    "APPROVED": ReviewDecision.APPROVED,
    "CHANGES_REQUESTED": ReviewDecision.CHANGES_REQUESTED,
    "REVIEW_REQUIRED": ReviewDecision.REVIEW_REQUIRED,
}


def parse_merge_status_response(response: Dict[str, object]) -> MergeStatusResponse:
    """Parse GraphQL response into Pydantic model."""
    try:
        return MergeStatusResponse.model_validate(response)
    except Exception as e:
        raise TypeError(f"Invalid GraphQL response: {e}")


def merge_snapshot_from_node(node: PRStatusNode) -> MergeSnapshot:
    """Map a PR status node onto a MergeSnapshot. A commit without checks counts as passing."""
    rollup = node.commits.nodes[-1].commit.statusCheckRollup if node.commits.nodes else None
    checks = CHECKS_BY_ROLLUP_STATE.get(rollup.state, ChecksStatus.PENDING) if rollup else ChecksStatus.PASSING
    review = REVIEW_BY_DECISION.get(node.reviewDecision or "", ReviewDecision.NONE)
    return MergeSnapshot(pr_number=node.number, checks_status=checks, review_decision=review)


class GitHubRequester(Protocol):
    """Type for PyGithub requester to handle GraphQL calls.

    This types the internal _Github__requester that's needed for GraphQL.
    We use a Protocol since the requester is a private implementation detail.
    """
    def requestJsonAndCheck(
        self,
        verb: str,
        url: str,
        parameters: Optional[Dict[str, object]] = None,
        headers: Optional[Dict[str, str]] = None,
        input: Optional[Dict[str, object]] = None
    ) -> GraphQLResponseType:
        ...
