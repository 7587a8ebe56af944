"""GraphQL documents for issues and pull requests.

Every document selects issues and pull requests through the same two
fragments, so the fields that populate ``ExternalThread`` are declared once.
"""

from __future__ import annotations

ACTOR_FIELDS_FRAGMENT = """
fragment ActorFields on Actor {
  login
}
"""

ISSUE_FIELDS_FRAGMENT = """
fragment IssueFields on Issue {
  __typename
  id
  number
  title
  body
  state
  url
  createdAt
  updatedAt
  author { ...ActorFields }
  repository { nameWithOwner }
}
"""

PULL_REQUEST_FIELDS_FRAGMENT = """
fragment PullRequestFields on PullRequest {
  __typename
  id
  number
  title
  body
  state
  url
  createdAt
  updatedAt
  baseRefName
  headRefName
  author { ...ActorFields }
  repository { nameWithOwner }
}
"""

ISSUE_OR_PULL_REQUEST = """
... on Issue { ...IssueFields }
... on PullRequest { ...PullRequestFields }
"""

SEARCH_PAGE_SIZE = 100


def _document(body: str, *, issues: bool = True) -> str:
    fragments = [ACTOR_FIELDS_FRAGMENT, PULL_REQUEST_FIELDS_FRAGMENT]
    if issues:
        fragments.insert(1, ISSUE_FIELDS_FRAGMENT)
    return body.strip() + "\n" + "".join(fragments)


NODE_BY_ID_QUERY = _document(
    f"""
query ThreadByNodeID($id: ID!) {{
  node(id: $id) {{
    {ISSUE_OR_PULL_REQUEST}
  }}
}}
"""
)

NODE_BY_REPOSITORY_AND_NUMBER_QUERY = _document(
    f"""
query ThreadByRepositoryAndNumber($repositoryId: ID!, $number: Int!) {{
  node(id: $repositoryId) {{
    ... on Repository {{
      issueOrPullRequest(number: $number) {{
        {ISSUE_OR_PULL_REQUEST}
      }}
    }}
  }}
}}
"""
)

SEARCH_QUERY = _document(
    f"""
query ThreadsByQuery($query: String!) {{
  search(type: ISSUE, first: {SEARCH_PAGE_SIZE}, query: $query) {{
    issueCount
    pageInfo {{ hasNextPage }}
    nodes {{
      {ISSUE_OR_PULL_REQUEST}
    }}
  }}
}}
"""
)

PULL_REQUESTS_BY_HEAD_QUERY = _document(
    """
query PullRequestsByHead($repositoryId: ID!, $headRefName: String!, $baseRefName: String!) {
  node(id: $repositoryId) {
    ... on Repository {
      pullRequests(first: 1, states: [OPEN], headRefName: $headRefName, baseRefName: $baseRefName) {
        nodes { ...PullRequestFields }
      }
    }
  }
}
""",
    issues=False,
)

CREATE_PULL_REQUEST_MUTATION = _document(
    """
mutation CreatePullRequest($input: CreatePullRequestInput!) {
  createPullRequest(input: $input) {
    pullRequest { ...PullRequestFields }
  }
}
""",
    issues=False,
)

UPDATE_PULL_REQUEST_MUTATION = _document(
    """
mutation UpdatePullRequest($input: UpdatePullRequestInput!) {
  updatePullRequest(input: $input) {
    pullRequest { ...PullRequestFields }
  }
}
""",
    issues=False,
)


__all__ = [
    "CREATE_PULL_REQUEST_MUTATION",
    "NODE_BY_ID_QUERY",
    "NODE_BY_REPOSITORY_AND_NUMBER_QUERY",
    "PULL_REQUESTS_BY_HEAD_QUERY",
    "SEARCH_PAGE_SIZE",
    "SEARCH_QUERY",
    "UPDATE_PULL_REQUEST_MUTATION",
]
