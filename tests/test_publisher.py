from __future__ import annotations

import anyio
import pytest

from thread_sync.errors import NamespaceNotAllowedError, NotFoundError
from thread_sync.publisher import ChangePublisher, NamespaceAllowList, PublishConfig, branch_name

PATCH = """diff --git a/README.md b/README.md
--- a/README.md
+++ b/README.md
@@ -1 +1 @@
-hello
+hello world
"""


class FakeGit:
    def __init__(self, branch: str = "main", commit: str = "c1") -> None:
        self.branch = branch
        self.commit = commit
        self.commits: list[tuple] = []
        self.pushes: list[tuple] = []

    async def default_branch(self, repository):
        return self.branch, self.commit

    async def create_commit_from_patch(self, repository, base_commit, target_ref, patch, commit_info):
        self.commits.append((repository.name, base_commit, target_ref, patch, commit_info))
        return "c2"

    async def push(self, repository, refspecs, *, remote="origin", force=True):
        self.pushes.append((repository.name, list(refspecs), force))
        return ""


@pytest.fixture
def git():
    return FakeGit()


@pytest.fixture
def publisher(repositories, git, reconciler):
    return ChangePublisher(
        repositories,
        git,
        reconciler,
        PublishConfig(author_name="bot", author_email="bot@example.com", is_allowed=NamespaceAllowList(["github.com/owner/"])),
    )


@pytest.mark.parametrize(
    "campaign, expected",
    [
        ("fix-bug", "a8n/fix-bug"),
        ("Fix the bug!", "a8n/Fix-the-bug"),
        ("deps/upgrade v1.2", "a8n/deps-upgrade-v1.2"),
        ("snake_case", "a8n/snake_case"),
    ],
)
def test_branch_name(campaign, expected):
    assert branch_name("a8n", campaign) == expected


@pytest.mark.parametrize("campaign", ["!!!", "🚀", "", "  "])
def test_branch_name_without_usable_characters(campaign):
    with pytest.raises(ValueError):
        branch_name("a8n", campaign)


def test_empty_allow_list_refuses_everything():
    assert not NamespaceAllowList()("github.com/owner/repo")
    assert NamespaceAllowList(["GitHub.com/Owner/"])("github.com/owner/repo")


def test_allow_list_matches_whole_namespaces():
    allowed = NamespaceAllowList(["github.com/sd9"])

    assert allowed("github.com/sd9/repo")
    assert not allowed("github.com/sd9evil/repo")
    assert not NamespaceAllowList(["/", ""])("github.com/sd9/repo")


@pytest.mark.anyio
async def test_unusable_campaign_name_touches_nothing(publisher, git, github):
    with pytest.raises(ValueError):
        await publisher.publish("github.com/owner/repo", "!!!", "T", "B", PATCH)

    assert git.commits == []
    assert git.pushes == []
    assert github.calls == []


@pytest.mark.anyio
async def test_publish_creates_branch_and_pull_request(publisher, git, github, node):
    github.on("pull_requests_by_head", {"node": {"pullRequests": {"nodes": []}}})
    github.on("create_pull_request", {"createPullRequest": {"pullRequest": node(12)}})

    thread_id = await publisher.publish("github.com/owner/repo", "fix-bug", "Fix the bug", "Details", PATCH, campaign_id=4)

    [(name, base, ref, patch, info)] = git.commits
    assert (name, base, ref, patch) == ("github.com/owner/repo", "c1", "refs/heads/a8n/fix-bug", PATCH)
    assert info.message == "a8n: fix-bug"
    assert info.author_email == "bot@example.com"
    assert git.pushes == [("github.com/owner/repo", ["refs/heads/a8n/fix-bug:refs/heads/a8n/fix-bug"], True)]

    _, variables = github.calls[-1]
    assert variables["input"]["headRefName"] == "a8n/fix-bug"
    assert variables["input"]["baseRefName"] == "main"
    assert variables["input"]["body"] == "Details\n\nCampaign: fix-bug"

    thread = await publisher.reconciler.threads.find_thread_by_id(thread_id)
    assert thread.number == 12
    assert thread.campaign_id == 4


@pytest.mark.anyio
async def test_republish_updates_same_pull_request(publisher, github, node):
    github.on("pull_requests_by_head", {"node": {"pullRequests": {"nodes": []}}})
    github.on("create_pull_request", {"createPullRequest": {"pullRequest": node(12)}})
    thread_id = await publisher.publish("github.com/owner/repo", "fix-bug", "Fix the bug", "Details", PATCH)

    github.on("update_pull_request", {"updatePullRequest": {"pullRequest": node(12, title="Fix it better")}})
    again = await publisher.publish(
        "github.com/owner/repo", "fix-bug", "Fix it better", "Details", PATCH, existing_thread_id=thread_id
    )

    assert again == thread_id
    assert github.count("create_pull_request") == 1
    assert github.count("update_pull_request") == 1
    _, variables = github.calls[-1]
    assert variables["input"]["pullRequestId"] == "PR_owner/repo_12"
    thread = await publisher.reconciler.threads.find_thread_by_id(thread_id)
    assert thread.title == "Fix it better"
    assert await publisher.reconciler.threads.count_threads() == 1


@pytest.mark.anyio
async def test_retry_after_partial_failure_reuses_pull_request(publisher, github, node):
    github.on("pull_requests_by_head", {"node": {"pullRequests": {"nodes": [node(12)]}}})

    await publisher.publish("github.com/owner/repo", "fix-bug", "Fix the bug", "Details", PATCH)

    assert github.count("create_pull_request") == 0


@pytest.mark.anyio
async def test_publish_outside_allowed_namespace(repositories, git, reconciler, github):
    publisher = ChangePublisher(repositories, git, reconciler, PublishConfig())

    with pytest.raises(NamespaceNotAllowedError):
        await publisher.publish("github.com/owner/repo", "fix-bug", "T", "B", PATCH)

    assert git.commits == []
    assert git.pushes == []
    assert github.calls == []


@pytest.mark.anyio
async def test_publish_unknown_repository(publisher, git):
    with pytest.raises(NotFoundError):
        await publisher.publish("github.com/nobody/repo", "fix-bug", "T", "B", PATCH)

    assert git.commits == []


@pytest.mark.anyio
async def test_publish_times_out(repositories, reconciler):
    class SlowGit(FakeGit):
        async def push(self, repository, refspecs, *, remote="origin", force=True):
            await anyio.sleep(5)

    publisher = ChangePublisher(
        repositories,
        SlowGit(),
        reconciler,
        PublishConfig(is_allowed=lambda name: True, timeout_seconds=0.05),
    )

    with pytest.raises(TimeoutError):
        await publisher.publish("github.com/owner/repo", "fix-bug", "T", "B", PATCH)
