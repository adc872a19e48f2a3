"""
Source document loaders for ingestion.

Every loader returns SourceDocuments with a deterministic ``source_id``, so a
re-run produces the same record ids and overwrites instead of duplicating.

    data/*.pdf            -> pdf_<name>
    data/*.md             -> md_<name>
    data/experience.json  -> experience_<company>  (one document per role)
    data/projects.json    -> project_<title[:30]>  (one document per project)
    data/skills.json      -> skills_data
    GitHub READMEs        -> github_<repo>         (optional, network)
"""

import base64
import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import httpx
from pypdf import PdfReader

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class SourceDocument:
    source_id: str
    source_type: str
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def slugify(name: str) -> str:
    return _WHITESPACE_RE.sub("_", name.strip()).lower()


def _bullets(items: Iterable[str]) -> str:
    return "\n".join(f"• {item}" for item in items)


def _read_json(path: str) -> Optional[Any]:
    if not os.path.exists(path):
        logger.info(f"{os.path.basename(path)} not found, skipping")
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        logger.warning(f"Could not parse {path}: {e} - skipping")
        return None


def extract_pdf_text(path: str) -> str:
    reader = PdfReader(path)
    parts = []
    for page in reader.pages:
        page_text = page.extract_text() or ""
        if page_text.strip():
            parts.append(page_text.strip())
    return "\n\n".join(parts).strip()


def load_pdfs(data_dir: str) -> List[SourceDocument]:
    if not os.path.isdir(data_dir):
        logger.info(f"No {data_dir} directory found, skipping PDFs")
        return []

    documents = []
    for filename in sorted(os.listdir(data_dir)):
        if not filename.lower().endswith(".pdf"):
            continue
        path = os.path.join(data_dir, filename)
        try:
            text = extract_pdf_text(path)
        except Exception as e:
            logger.warning(f"Failed to parse {filename}: {e}")
            continue
        if not text:
            logger.warning(f"{filename} contains no extractable text, skipping")
            continue

        documents.append(SourceDocument(
            source_id=f"pdf_{slugify(filename[:-4])}",
            source_type="pdf",
            text=text,
            metadata={"filename": filename},
        ))
        logger.info(f"Loaded PDF: {filename} ({len(text)} chars)")
    return documents


def load_markdown(data_dir: str) -> List[SourceDocument]:
    if not os.path.isdir(data_dir):
        return []

    documents = []
    for filename in sorted(os.listdir(data_dir)):
        if not filename.lower().endswith(".md"):
            continue
        with open(os.path.join(data_dir, filename), "r", encoding="utf-8") as f:
            text = f.read().strip()
        if not text:
            continue
        documents.append(SourceDocument(
            source_id=f"md_{slugify(filename[:-3])}",
            source_type="portfolio_context",
            text=text,
            metadata={"filename": filename},
        ))
        logger.info(f"Loaded markdown: {filename} ({len(text)} chars)")
    return documents


def render_experience(role: Dict[str, Any]) -> str:
    lines = [
        f"Role: {role.get('role', '')}",
        f"Company: {role.get('company', '')}",
        f"Period: {role.get('period', '')} to {role.get('end', '')} ({role.get('duration', '')})",
        f"Location: {role.get('location', '')}",
        f"Type: {role.get('type', '')}",
        f"Skills: {', '.join(role.get('skills', []))}",
        "",
        "Key Responsibilities & Achievements:",
        _bullets(role.get("highlights", [])),
    ]
    sub_roles = role.get("subRoles") or []
    if sub_roles:
        lines += ["", "Progression:", _bullets(f"{r.get('title', '')} ({r.get('period', '')})" for r in sub_roles)]
    return "\n".join(lines).strip()


def load_experience(path: str) -> List[SourceDocument]:
    roles = _read_json(path)
    if not roles:
        return []
    return [
        SourceDocument(
            source_id=f"experience_{slugify(role['company'])}",
            source_type="work_experience",
            text=render_experience(role),
            metadata={"company": role["company"]},
        )
        for role in roles
        if role.get("company")
    ]


def render_project(project: Dict[str, Any]) -> str:
    return "\n".join([
        f"Project: {project.get('title', '')}",
        f"Subtitle: {project.get('subtitle', '')}",
        f"Category: {project.get('category', '')}",
        "",
        f"Description: {project.get('description', '')}",
        "",
        f"Technologies used: {', '.join(project.get('tech', []))}",
        f"Key highlights: {', '.join(project.get('highlights', []))}",
        f"GitHub: {project.get('github', '')}",
    ]).strip()


def load_projects(path: str) -> List[SourceDocument]:
    projects = _read_json(path)
    if not projects:
        return []
    return [
        SourceDocument(
            source_id=f"project_{slugify(project['title'])[:30]}",
            source_type="project",
            text=render_project(project),
            metadata={"projectTitle": project["title"]},
        )
        for project in projects
        if project.get("title")
    ]


def render_skills(skills: Dict[str, Any], owner_name: Optional[str] = None) -> str:
    heading = f"{owner_name}'s Technical Skills:" if owner_name else "Technical Skills:"
    categories = "\n\n".join(
        f"{category.get('name', '')}:\n" + ", ".join(f"• {s.get('name', '')}" for s in category.get("skills", []))
        for category in skills.get("categories", [])
    )
    certifications = _bullets(
        f"{c.get('title', '')} ({c.get('org', '')})" for c in skills.get("certifications", [])
    )
    return f"{heading}\n\n{categories}\n\nCertifications:\n{certifications}".strip()


def load_skills(path: str, owner_name: Optional[str] = None) -> List[SourceDocument]:
    skills = _read_json(path)
    if not skills:
        return []
    return [SourceDocument(source_id="skills_data", source_type="skills", text=render_skills(skills, owner_name))]


def load_local_sources(data_dir: str, owner_name: Optional[str] = None) -> List[SourceDocument]:
    """All file-based sources, in a fixed order."""
    documents = load_pdfs(data_dir)
    documents += load_markdown(data_dir)
    documents += load_experience(os.path.join(data_dir, "experience.json"))
    documents += load_projects(os.path.join(data_dir, "projects.json"))
    documents += load_skills(os.path.join(data_dir, "skills.json"), owner_name)
    return documents


async def fetch_github_readmes(owner: str, repos: List[str], token: Optional[str] = None,
                               http_client: Optional[httpx.AsyncClient] = None) -> List[SourceDocument]:
    """Fetch repository READMEs; a repo that cannot be fetched is skipped."""
    headers = {"Accept": "application/vnd.github+json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"

    client = http_client or httpx.AsyncClient(timeout=15.0)
    documents = []
    try:
        for repo in repos:
            try:
                response = await client.get(f"{GITHUB_API_BASE}/repos/{owner}/{repo}/readme", headers=headers)
                response.raise_for_status()
                text = base64.b64decode(response.json()["content"]).decode("utf-8", errors="replace")
            except (httpx.HTTPError, KeyError, ValueError) as e:
                logger.warning(f"Could not fetch README for {owner}/{repo}: {e}")
                continue

            documents.append(SourceDocument(
                source_id=f"github_{repo.lower()}",
                source_type="github_readme",
                text=text,
                metadata={"repo": f"{owner}/{repo}"},
            ))
            logger.info(f"Loaded README: {owner}/{repo} ({len(text)} chars)")
    finally:
        if http_client is None:
            await client.aclose()
    return documents
