from pathlib import Path

import pytest

from lineu_worker.repo import RepoSync, RepoSyncError, inject_github_token, repo_name


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://github.com/acme/shop.git", "shop"),
        ("https://github.com/acme/shop/", "shop"),
        ("git@github.com:acme/api.git", "api"),
        ("git@host:monorepo", "monorepo"),
    ],
)
def test_repo_name(url: str, expected: str) -> None:
    assert repo_name(url) == expected


def test_token_only_injected_into_github_https() -> None:
    assert inject_github_token("https://github.com/acme/shop.git", "ghp_x") == "https://ghp_x@github.com/acme/shop.git"
    assert inject_github_token("git@github.com:acme/shop.git", "ghp_x") == "git@github.com:acme/shop.git"
    assert inject_github_token("https://github.com/acme/shop.git", None) == "https://github.com/acme/shop.git"


@pytest.mark.asyncio
async def test_pull_without_checkout_is_a_noop(tmp_path: Path) -> None:
    assert await RepoSync(repos_dir=tmp_path).pull() is False


@pytest.mark.asyncio
async def test_pull_failure_keeps_current_state(tmp_path: Path) -> None:
    repo = RepoSync(path=tmp_path, git=str(tmp_path / "missing-git"))
    assert await repo.pull() is False
    assert repo.path == tmp_path


@pytest.mark.asyncio
async def test_existing_checkout_is_pulled_instead_of_cloned(tmp_path: Path) -> None:
    target = tmp_path / "repos" / "shop"
    (target / ".git").mkdir(parents=True)
    repo = RepoSync(repos_dir=tmp_path / "repos", git=str(tmp_path / "missing-git"))

    assert await repo.clone("https://github.com/acme/shop.git") == target
    assert repo.path == target


@pytest.mark.asyncio
async def test_clone_failure_masks_token(tmp_path: Path) -> None:
    git = tmp_path / "fake-git"
    git.write_text('#!/bin/sh\necho "fatal: could not read from $2"\nexit 128\n', encoding="utf-8")
    git.chmod(0o755)
    repo = RepoSync(repos_dir=tmp_path / "repos", github_token="ghp_secret", git=str(git))

    with pytest.raises(RepoSyncError) as exc_info:
        await repo.clone("https://github.com/acme/shop.git")

    assert "ghp_secret" not in str(exc_info.value)
    assert "***" in str(exc_info.value)
    assert repo.path is None
