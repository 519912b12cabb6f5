# src/relpub/collector.py
"""
Release source collection (deterministic, git based).

Purpose:
- Clone (once) and update (fetch) a repository into a local cache directory.
- Use the newest tag as the release being published and collect the commits
  since the previous tag.
- Derive project metadata (name, README, description, primary language), the
  Android artifact if one is checked in, key user-facing changes and
  "what's new" suggestions.

Design goals:
- No shell=True, explicit path handling.
- Actionable errors: SourceCollectionError names the git subcommand, exit
  code, working directory and what git printed.
- Progress is reported through a sink (state, percent, message) so the
  session can expose it as an AgentStatus.
"""
from __future__ import annotations

import hashlib
import logging
import re
import subprocess
from collections import Counter
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Tuple

from relpub.errors import SourceCollectionError
from relpub.fields import DEFAULT_WHATS_NEW
from relpub.models import CommitInfo, ProjectInfo, ReleaseAsset, ReleaseData, SourceRelease

logger = logging.getLogger(__name__)

ProgressSink = Callable[[str, int, str], None]


class SourceCollector(Protocol):
    def collect(self, project_ref: str, progress: ProgressSink) -> ReleaseData:
        ...


class StaticCollector:
    """Returns a prepared snapshot (or raises a prepared error)."""

    def __init__(self, data: Optional[ReleaseData] = None, error: Optional[Exception] = None) -> None:
        self.data = data
        self.error = error

    def collect(self, project_ref: str, progress: ProgressSink) -> ReleaseData:
        progress("running", 50, f"Loading prepared release data for {project_ref}")
        if self.error is not None:
            raise self.error
        progress("completed", 100, "Collection finished")
        return self.data if self.data is not None else ReleaseData()


# ---------- git plumbing ----------

def git_output(cwd: Path, *args: str, check: bool = True) -> str:
    """stdout of one git command. With check=False a failing command yields ""."""
    try:
        proc = subprocess.run(["git", *args], cwd=str(cwd), capture_output=True, text=True, check=False)
    except FileNotFoundError as e:
        raise SourceCollectionError("git executable not found on PATH") from e

    if proc.returncode == 0:
        return proc.stdout
    if not check:
        return ""
    detail = proc.stderr.strip() or proc.stdout.strip() or "no output"
    raise SourceCollectionError(f"git {args[0]} failed with exit code {proc.returncode} in {cwd}: {detail}")


def repo_name_from_ref(project_ref: str) -> str:
    name = project_ref.strip().rstrip("/").split("/")[-1]
    return name[:-4] if name.endswith(".git") else name


def cache_key(project_ref: str) -> str:
    """Cache folder for a remote: readable repo name plus a digest of the full ref."""
    ref = project_ref.strip().rstrip("/")
    slug = re.sub(r"[^A-Za-z0-9._-]+", "_", repo_name_from_ref(ref)) or "repo"
    return f"{slug}-{hashlib.sha1(ref.encode('utf-8')).hexdigest()[:10]}"


def ensure_repo(project_ref: str, cache_dir: Path) -> Path:
    """Return a local, up-to-date clone. Local repositories are used in place."""
    local = Path(project_ref).expanduser()
    if (local / ".git").exists():
        return local.resolve()

    cache_dir = cache_dir.expanduser().resolve()
    cache_dir.mkdir(parents=True, exist_ok=True)
    repo_dir = cache_dir / cache_key(project_ref)

    if not repo_dir.exists():
        logger.info("Cloning %s into %s", project_ref, repo_dir)
        git_output(cache_dir, "clone", "--quiet", project_ref, str(repo_dir))
    elif not (repo_dir / ".git").is_dir():
        raise SourceCollectionError(f"Cache entry {repo_dir} is not a git checkout; remove it and retry")

    git_output(repo_dir, "fetch", "--quiet", "--tags", "--prune", "origin")
    return repo_dir


def list_tags(repo_dir: Path) -> List[str]:
    """Tags, newest first."""
    return [t.strip() for t in git_output(repo_dir, "tag", "--sort=-creatordate").splitlines() if t.strip()]


def tag_message(repo_dir: Path, tag: str) -> str:
    return git_output(repo_dir, "tag", "-l", "--format=%(contents)", tag, check=False).strip()


def list_commits(repo_dir: Path, rev_range: str, max_commits: int = 50) -> List[CommitInfo]:
    # Hard separators keep parsing safe; each record starts with sep_record and
    # --name-only appends the touched files after the last sep_field.
    sep_record = "---RP_RECORD---"
    sep_field = "---RP_FIELD---"
    pretty = f"{sep_record}%H{sep_field}%an{sep_field}%ad{sep_field}%s{sep_field}"

    stdout = git_output(
        repo_dir, "log", "-n", str(max_commits), rev_range, f"--pretty=format:{pretty}", "--date=iso-strict", "--name-only"
    )
    commits: List[CommitInfo] = []
    for rec in stdout.split(sep_record):
        parts = rec.split(sep_field)
        if len(parts) < 5:
            continue
        sha, author, date, subject, files_blob = parts[0], parts[1], parts[2], parts[3], parts[4]
        commits.append(
            CommitInfo(
                sha=sha.strip(),
                message=subject.strip(),
                author=author.strip(),
                date=date.strip(),
                changed_files=[ln.strip() for ln in files_blob.splitlines() if ln.strip()],
            )
        )
    return commits


# ---------- project metadata ----------

LANGUAGE_BY_EXT = {
    ".kt": "Kotlin",
    ".java": "Java",
    ".dart": "Dart",
    ".swift": "Swift",
    ".ts": "TypeScript",
    ".js": "JavaScript",
    ".py": "Python",
    ".go": "Go",
    ".cs": "C#",
    ".cpp": "C++",
}


def detect_primary_language(files: List[str]) -> str:
    counts = Counter(LANGUAGE_BY_EXT[Path(f).suffix] for f in files if Path(f).suffix in LANGUAGE_BY_EXT)
    if not counts:
        return ""
    return counts.most_common(1)[0][0]


def read_readme(repo_dir: Path) -> str:
    for name in ("README.md", "README.rst", "README.txt", "README"):
        path = repo_dir / name
        if path.is_file():
            return path.read_text(encoding="utf-8", errors="replace")
    return ""


def describe_from_readme(readme: str) -> str:
    """First prose paragraph of a README (headings, badges and blank lines skipped)."""
    for block in re.split(r"\n\s*\n", readme):
        text = " ".join(ln.strip() for ln in block.splitlines() if ln.strip())
        if not text or text.startswith(("#", "![", "[![", "<")):
            continue
        return text
    return ""


APPLICATION_ID_RE = re.compile(r"""\bapplicationId\s*=?\s*["']([A-Za-z0-9_.]+)["']""")
MANIFEST_PACKAGE_RE = re.compile(r"""<manifest\b[^>]*\bpackage\s*=\s*["']([A-Za-z0-9_.]+)["']""", re.DOTALL)


def _tracked_paths(repo_dir: Path, pattern: str) -> List[Path]:
    return sorted(
        (p for p in repo_dir.rglob(pattern) if not {".git", "build"} & set(p.relative_to(repo_dir).parts)),
        key=lambda p: (len(p.parts), str(p)),
    )


def detect_declared_package(repo_dir: Path) -> str:
    """
    Package name the Android build declares: Gradle applicationId first,
    AndroidManifest package attribute otherwise. Empty when neither is found.
    """
    for pattern, regex in (("build.gradle*", APPLICATION_ID_RE), ("AndroidManifest.xml", MANIFEST_PACKAGE_RE)):
        for path in _tracked_paths(repo_dir, pattern):
            m = regex.search(path.read_text(encoding="utf-8", errors="replace"))
            if m:
                return m.group(1)
    return ""


def find_android_asset(repo_dir: Path) -> Optional[ReleaseAsset]:
    for pattern in ("*.aab", "*.apk"):
        for path in sorted(repo_dir.rglob(pattern)):
            if ".git" in path.parts:
                continue
            return ReleaseAsset(name=path.name, download_url=path.as_uri(), size=path.stat().st_size)
    return None


# ---------- change summarization ----------

# Conventional Commits: feat -> new feature, fix -> bug fix. Anything else is
# treated as internal for the purpose of user-facing "what's new" text.
CONVENTIONAL_RE = re.compile(r"^(?P<type>[a-zA-Z]+)(\([^)]+\))?!?:\s+(?P<text>.+)$")
MERGE_RE = re.compile(r"^Merge (pull request|branch)\b", re.IGNORECASE)
USER_FACING_TYPES = {"feat": "New", "fix": "Fixed", "perf": "Improved"}


def summarize_changes(commits: List[CommitInfo]) -> List[str]:
    changes: List[str] = []
    for c in commits:
        subject = c.message.strip()
        if not subject or MERGE_RE.match(subject):
            continue
        m = CONVENTIONAL_RE.match(subject)
        if m is None:
            continue
        label = USER_FACING_TYPES.get(m.group("type").lower())
        if label:
            text = m.group("text").strip()
            changes.append(f"{label}: {text[0].upper()}{text[1:]}")
    return changes


def whats_new_suggestions(key_changes: List[str], tag: Optional[str]) -> Tuple[List[str], float]:
    if not key_changes:
        return [DEFAULT_WHATS_NEW], 0.1
    heading = f"What's new in {tag}:" if tag else "What's new:"
    bullets = "\n".join(f"- {c}" for c in key_changes[:10])
    short = "; ".join(key_changes[:3])
    confidence = min(1.0, 0.3 + 0.1 * len(key_changes))
    return [f"{heading}\n{bullets}", short[:500]], confidence


def _github_release_url(project_ref: str, tag: str) -> Optional[str]:
    m = re.match(r"^https?://github\.com/([^/]+)/([^/]+?)(\.git)?/?$", project_ref.strip())
    if m:
        return f"https://github.com/{m.group(1)}/{m.group(2)}/releases/tag/{tag}"
    return None


class GitSourceCollector:
    def __init__(self, cache_dir: Path, max_commits: int = 50) -> None:
        self.cache_dir = cache_dir
        self.max_commits = max_commits

    def collect(self, project_ref: str, progress: ProgressSink) -> ReleaseData:
        progress("running", 10, "Fetching repository...")
        repo_dir = ensure_repo(project_ref, self.cache_dir)

        progress("running", 30, "Looking up release tags...")
        tags = list_tags(repo_dir)
        if not tags:
            raise SourceCollectionError(f"No tags found in {project_ref}; tag the release first.")
        latest = tags[0]
        previous = tags[1] if len(tags) > 1 else None
        release = SourceRelease(
            tag_name=latest,
            name=latest,
            body=tag_message(repo_dir, latest),
            url=_github_release_url(project_ref, latest),
        )

        progress("running", 50, "Collecting commits since the last release...")
        rev_range = f"{previous}..{latest}" if previous else latest
        commits = list_commits(repo_dir, rev_range, max_commits=self.max_commits)

        progress("running", 70, "Reading project metadata...")
        readme = read_readme(repo_dir)
        tracked = git_output(repo_dir, "ls-files").splitlines()
        project = ProjectInfo(
            repo_name=repo_name_from_ref(project_ref),
            description=describe_from_readme(readme),
            readme=readme,
            primary_language=detect_primary_language(tracked),
            package_name=detect_declared_package(repo_dir),
        )

        progress("running", 90, "Summarizing changes...")
        key_changes = summarize_changes(commits)
        changed_files = sorted({f for c in commits for f in c.changed_files})
        suggestions, confidence = whats_new_suggestions(key_changes, latest)

        progress("completed", 100, "Collection finished")
        logger.info(
            "Collected release %s for %s: %d commits, %d key changes",
            latest,
            project_ref,
            len(commits),
            len(key_changes),
        )
        return ReleaseData(
            release=release,
            asset=find_android_asset(repo_dir),
            project=project,
            commits=commits,
            changed_files=changed_files,
            key_changes=key_changes,
            suggested_whats_new=suggestions,
            confidence_score=confidence,
        )
