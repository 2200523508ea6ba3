"""GraphQL documents used by the sync pipeline."""

_ITEM_COMMON = """
    databaseId
    number
    title
    body
    url
    state
    createdAt
    updatedAt
    closedAt
    author { login }
    authorAssociation
    labels(first: 20) { nodes { name } }
    assignees(first: 10) { nodes { login } }
    reactionGroups { content reactors { totalCount } }
    comments(last: 30) {
      totalCount
      nodes {
        databaseId
        body
        createdAt
        authorAssociation
        author { login }
      }
    }
"""

ISSUE_FIELDS = (
    "fragment IssueFields on Issue {"
    + _ITEM_COMMON
    + """
    issueType { name }
    milestone { title }
}
"""
)

PULL_REQUEST_FIELDS = (
    "fragment PullRequestFields on PullRequest {"
    + _ITEM_COMMON
    + """
    isDraft
    mergedAt
    mergeable
    reviewDecision
    additions
    deletions
    changedFiles
    reviewRequests(first: 10) {
      nodes { requestedReviewer { ... on User { login } ... on Team { slug } } }
    }
}
"""
)

REPOSITORY = """
query($owner: String!, $repo: String!) {
  repository(owner: $owner, name: $repo) {
    databaseId
    nameWithOwner
    isPrivate
  }
}
"""

ISSUES_PAGE = (
    """
query($owner: String!, $repo: String!, $first: Int!, $after: String,
      $states: [IssueState!], $since: DateTime) {
  repository(owner: $owner, name: $repo) {
    issues(first: $first, after: $after, states: $states,
           orderBy: {field: UPDATED_AT, direction: ASC},
           filterBy: {since: $since}) {
      totalCount
      pageInfo { hasNextPage endCursor }
      nodes { ...IssueFields }
    }
  }
}
"""
    + ISSUE_FIELDS
)

PULL_REQUESTS_PAGE = (
    """
query($owner: String!, $repo: String!, $first: Int!, $after: String,
      $states: [PullRequestState!], $direction: OrderDirection!) {
  repository(owner: $owner, name: $repo) {
    pullRequests(first: $first, after: $after, states: $states,
                 orderBy: {field: UPDATED_AT, direction: $direction}) {
      totalCount
      pageInfo { hasNextPage endCursor }
      nodes { ...PullRequestFields }
    }
  }
}
"""
    + PULL_REQUEST_FIELDS
)

SINGLE_ITEM = (
    """
query($owner: String!, $repo: String!, $number: Int!) {
  repository(owner: $owner, name: $repo) {
    issueOrPullRequest(number: $number) {
      __typename
      ... on Issue { ...IssueFields }
      ... on PullRequest { ...PullRequestFields }
    }
  }
}
"""
    + ISSUE_FIELDS
    + PULL_REQUEST_FIELDS
)

TEAM_MEMBERS = """
query($org: String!, $slug: String!, $after: String) {
  organization(login: $org) {
    team(slug: $slug) {
      members(first: 100, after: $after) {
        pageInfo { hasNextPage endCursor }
        nodes { login }
      }
    }
  }
}
"""
