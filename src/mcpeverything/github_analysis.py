"""GitHub repository analysis.

Fetches repository metadata, a depth-limited file tree and a prioritized
sample of source files from the GitHub REST API, then derives the
technology stack, API patterns, README features and a quality score that
the rest of the pipeline feeds into its prompts.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

from .errors import InvalidRepositoryUrlError, RepositoryAnalysisError

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"

LANGUAGE_EXTENSIONS: dict[str, list[str]] = {
    "JavaScript": [".js", ".mjs", ".jsx"],
    "TypeScript": [".ts", ".tsx", ".d.ts"],
    "Python": [".py", ".pyx", ".pyi"],
    "Java": [".java", ".jar"],
    "Go": [".go"],
    "Rust": [".rs"],
    "C++": [".cpp", ".cc", ".cxx", ".hpp"],
    "C": [".c", ".h"],
    "C#": [".cs"],
    "PHP": [".php"],
    "Ruby": [".rb"],
    "Swift": [".swift"],
    "Kotlin": [".kt", ".kts"],
    "Scala": [".scala"],
    "Dart": [".dart"],
    "Shell": [".sh", ".bash", ".zsh"],
    "PowerShell": [".ps1"],
    "SQL": [".sql"],
    "HTML": [".html", ".htm"],
    "CSS": [".css", ".scss", ".sass", ".less"],
    "Dockerfile": ["Dockerfile", ".dockerfile"],
}

# Entry points and manifests, fetched first
MAIN_FILE_PATTERNS = [
    "index.js", "index.ts", "main.js", "main.ts", "app.js", "app.ts",
    "server.js", "server.ts", "index.py", "main.py", "app.py",
    "Main.java", "Application.java", "main.go", "main.rs",
    "package.json", "requirements.txt", "Cargo.toml", "pom.xml",
    "build.gradle", "composer.json", "Gemfile", "go.mod",
]

PACKAGE_MANIFESTS = ("package.json", "requirements.txt", "Cargo.toml", "pom.xml")

NODE_FRAMEWORKS = {
    "react": "React",
    "vue": "Vue",
    "@angular/core": "Angular",
    "svelte": "Svelte",
    "next": "Next.js",
    "nuxt": "Nuxt",
    "express": "Express",
    "@nestjs/core": "NestJS",
    "fastify": "Fastify",
    "koa": "Koa",
}

NODE_TOOLS = {
    "typescript": "TypeScript",
    "eslint": "ESLint",
    "prettier": "Prettier",
    "jest": "Jest",
    "webpack": "Webpack",
    "vite": "Vite",
}

PYTHON_FRAMEWORKS = {
    "django": "Django",
    "flask": "Flask",
    "fastapi": "FastAPI",
    "tornado": "Tornado",
    "pyramid": "Pyramid",
}

RUST_FRAMEWORKS = {
    "tokio": "Tokio",
    "actix-web": "Actix Web",
    "warp": "Warp",
    "rocket": "Rocket",
}

DATABASE_KEYWORDS = {
    "PostgreSQL": ["postgres", "postgresql", "pg"],
    "MySQL": ["mysql"],
    "MongoDB": ["mongo", "mongodb"],
    "Redis": ["redis"],
    "SQLite": ["sqlite"],
    "Oracle": ["oracle"],
    "SQL Server": ["sqlserver", "mssql"],
}

EXTENSION_LANGUAGES = {
    "ts": "TypeScript",
    "js": "JavaScript",
    "py": "Python",
    "go": "Go",
    "rs": "Rust",
    "java": "Java",
    "rb": "Ruby",
    "php": "PHP",
    "cs": "C#",
    "cpp": "C++",
    "c": "C",
    "swift": "Swift",
    "kt": "Kotlin",
}

MAX_SOURCE_FILES = 15
MAX_TREE_DEPTH = 3
MAX_README_FEATURES = 10
MAX_API_USAGE_PATTERNS = 10
CODE_EXAMPLE_CHARS = 2000

REST_ROUTE_PATTERNS = [
    re.compile(r"app\.(get|post|put|delete|patch)\s*\(\s*['\"`]([^'\"`]+)['\"`]"),
    re.compile(r"router\.(get|post|put|delete|patch)\s*\(\s*['\"`]([^'\"`]+)['\"`]"),
    re.compile(r"@(get|post|put|delete|patch)\s*\(\s*['\"`]([^'\"`]+)['\"`]"),
]
ROUTE_CALL_PATTERN = re.compile(r"route\s*\(\s*['\"`]([^'\"`]+)['\"`]")

_GITHUB_URL_RE = re.compile(r"github\.com/([^/]+)/([^/]+)")
_LIST_ITEM_RE = re.compile(r"^(?:[-*]|\d+\.)\s+")
_CODE_BLOCK_RE = re.compile(r"```[\s\S]*?```")
_INSTALL_SECTION_RE = re.compile(r"##?\s*install[^#]*?```[^`]*```", re.IGNORECASE | re.DOTALL)
_USAGE_SECTION_RE = re.compile(r"##?\s*usage[^#]*?```[^`]*```", re.IGNORECASE | re.DOTALL)
_EXPRESS_ROUTE_RE = re.compile(
    r"(?:router|app)\.(get|post|put|delete|patch)\(['\"]([^'\"]+)['\"]", re.IGNORECASE
)
_FASTAPI_ROUTE_RE = re.compile(
    r"@app\.(get|post|put|delete|patch)\(['\"]([^'\"]+)['\"]", re.IGNORECASE
)


@dataclass
class FileTreeNode:
    """A file or directory in the repository tree."""

    path: str
    type: str  # "file" or "dir"
    size: int = 0
    download_url: Optional[str] = None
    extension: Optional[str] = None

    @property
    def name(self) -> str:
        return self.path.split("/")[-1]


@dataclass
class TechnologyStack:
    """Detected languages, frameworks and tooling."""

    languages: list[str] = field(default_factory=list)
    frameworks: list[str] = field(default_factory=list)
    databases: list[str] = field(default_factory=list)
    tools: list[str] = field(default_factory=list)
    package_managers: list[str] = field(default_factory=list)
    build_systems: list[str] = field(default_factory=list)
    confidence: float = 0.5


@dataclass
class ApiPattern:
    """An API style detected in the source files."""

    type: str  # REST, GraphQL, WebSocket, RPC, CLI
    endpoints: list[str] = field(default_factory=list)
    methods: list[str] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)
    confidence: float = 0.0


@dataclass
class SourceFile:
    """A fetched source file."""

    path: str
    content: str
    size: int = 0
    type: str = "other"  # main, config, package, readme, other
    language: Optional[str] = None


@dataclass
class RepositoryFeatures:
    """Capabilities inferred from the tree and sampled sources."""

    has_api: bool = False
    has_cli: bool = False
    has_database: bool = False
    has_tests: bool = False
    has_documentation: bool = False
    has_docker: bool = False
    has_ci: bool = False
    features: list[str] = field(default_factory=list)


@dataclass
class RepositoryMetadata:
    """Repository metadata as reported by GitHub."""

    name: str
    full_name: str
    description: Optional[str] = None
    language: Optional[str] = None
    size: int = 0
    stargazers_count: int = 0
    forks_count: int = 0
    topics: list[str] = field(default_factory=list)
    license: Optional[str] = None
    default_branch: str = "main"
    created_at: str = ""
    updated_at: str = ""
    homepage: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict) -> RepositoryMetadata:
        """Create metadata from a GitHub ``GET /repos/{owner}/{repo}`` payload."""
        license_info = data.get("license") or {}
        return cls(
            name=data.get("name", ""),
            full_name=data.get("full_name", ""),
            description=data.get("description"),
            language=data.get("language"),
            size=data.get("size") or 0,
            stargazers_count=data.get("stargazers_count") or 0,
            forks_count=data.get("forks_count") or 0,
            topics=list(data.get("topics") or []),
            license=license_info.get("name"),
            default_branch=data.get("default_branch") or "main",
            created_at=data.get("created_at") or "",
            updated_at=data.get("updated_at") or "",
            homepage=data.get("homepage"),
        )


@dataclass
class ReadmeAnalysis:
    """README content and what could be extracted from it."""

    content: Optional[str] = None
    extracted_features: list[str] = field(default_factory=list)
    installation: list[str] = field(default_factory=list)
    usage: list[str] = field(default_factory=list)


@dataclass
class QualityMetrics:
    """Repository hygiene score out of 10."""

    has_readme: bool = False
    has_tests: bool = False
    has_license: bool = False
    has_contributing: bool = False
    has_changelog: bool = False
    has_documentation: bool = False
    score: int = 0


@dataclass
class RepositoryAnalysis:
    """Everything the analyzer learned about a repository."""

    metadata: RepositoryMetadata
    file_tree: list[FileTreeNode] = field(default_factory=list)
    tech_stack: TechnologyStack = field(default_factory=TechnologyStack)
    api_patterns: list[ApiPattern] = field(default_factory=list)
    source_files: list[SourceFile] = field(default_factory=list)
    features: RepositoryFeatures = field(default_factory=RepositoryFeatures)
    readme: ReadmeAnalysis = field(default_factory=ReadmeAnalysis)
    quality: QualityMetrics = field(default_factory=QualityMetrics)


def parse_github_url(url: str) -> tuple[str, str]:
    """Split a GitHub URL into owner and repository name.

    Args:
        url: URL such as ``https://github.com/owner/repo`` or ``...repo.git``.

    Returns:
        Tuple of (owner, repo).

    Raises:
        InvalidRepositoryUrlError: If the URL does not name a repository.
    """
    match = _GITHUB_URL_RE.search(url or "")
    if not match:
        raise InvalidRepositoryUrlError("Invalid GitHub URL format")
    owner, repo = match.group(1), match.group(2)
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    return owner, repo


def _extension(name: str) -> str:
    return "." + name.rsplit(".", 1)[-1] if "." in name else ""


def detect_file_language(path: str) -> Optional[str]:
    """Language of a file based on its extension or name."""
    name = path.split("/")[-1]
    extension = _extension(name)
    for language, extensions in LANGUAGE_EXTENSIONS.items():
        if extension in extensions or name in extensions:
            return language
    return None


def get_file_priority(path: str) -> int:
    """Sampling priority for a file; higher is fetched first."""
    name = path.split("/")[-1]

    if name in MAIN_FILE_PATTERNS:
        return 100
    if name == "README.md":
        return 90
    if name.endswith(".md"):
        return 80
    if "config" in name:
        return 70
    if "test" in name or "spec" in name:
        return 60
    if "src/" in path or "lib/" in path:
        return 50
    return 10


def classify_file_type(path: str) -> str:
    """Classify a file as main, config, package, readme or other."""
    name = path.split("/")[-1]

    if name in PACKAGE_MANIFESTS:
        return "package"
    if name in MAIN_FILE_PATTERNS:
        return "main"
    if name == "README.md":
        return "readme"
    if "config" in name or name.startswith("."):
        return "config"
    return "other"


class GitHubClient:
    """Minimal client for the GitHub contents and repository endpoints."""

    def __init__(
        self,
        token: Optional[str] = None,
        api_url: str = GITHUB_API_URL,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/vnd.github+json",
            "User-Agent": "mcpeverything",
        })
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _get(self, path: str) -> Any:
        url = f"{self.api_url}{path}"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.Timeout as exc:
            raise RepositoryAnalysisError(
                f"GitHub API request timed out after {self.timeout} seconds"
            ) from exc
        except requests.RequestException as exc:
            raise RepositoryAnalysisError(f"GitHub API request failed: {exc}") from exc

        if response.status_code == 404:
            raise RepositoryAnalysisError(f"Not found: {path}")
        if response.status_code == 403 and response.headers.get("X-RateLimit-Remaining") == "0":
            raise RepositoryAnalysisError("GitHub API rate limit exceeded")
        if not response.ok:
            raise RepositoryAnalysisError(
                f"GitHub API error {response.status_code}: {response.text[:200]}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise RepositoryAnalysisError(
                f"GitHub API returned invalid JSON for {path}: {response.text[:200]}"
            ) from exc

    def get_repository(self, owner: str, repo: str) -> dict:
        """Fetch repository metadata."""
        return self._get(f"/repos/{owner}/{repo}")

    def get_contents(self, owner: str, repo: str, path: str = "") -> Any:
        """Fetch a directory listing (list) or a file entry (dict)."""
        return self._get(f"/repos/{owner}/{repo}/contents/{path}")

    def get_file_content(self, owner: str, repo: str, path: str) -> str:
        """Fetch and decode a file's content."""
        data = self.get_contents(owner, repo, path)
        if isinstance(data, dict) and "content" in data:
            try:
                raw = base64.b64decode(data["content"])
            except (binascii.Error, TypeError) as exc:
                raise RepositoryAnalysisError(f"Invalid base64 content for {path}: {exc}") from exc
            return raw.decode("utf-8", errors="replace")
        raise RepositoryAnalysisError(f"Could not fetch content for {path}")


class RepositoryAnalyzer:
    """Analyzes GitHub repositories for tool discovery."""

    def __init__(self, client: Optional[GitHubClient] = None):
        self.client = client or GitHubClient()

    def analyze_repository(self, github_url: str) -> RepositoryAnalysis:
        """Run the full analysis of a repository.

        Args:
            github_url: URL of the repository.

        Returns:
            RepositoryAnalysis with every derived section filled in.

        Raises:
            InvalidRepositoryUrlError: If the URL cannot be parsed.
            RepositoryAnalysisError: If any analysis step fails.
        """
        owner, repo = parse_github_url(github_url)
        logger.info(f"Starting analysis of {owner}/{repo}")

        try:
            metadata = RepositoryMetadata.from_api(self.client.get_repository(owner, repo))
            file_tree = self.get_file_tree(owner, repo)
            tech_stack = self.detect_tech_stack(owner, repo, file_tree)
            source_files = self.get_main_source_files(owner, repo, file_tree)
            api_patterns = self.extract_api_patterns(source_files)
            readme = self.analyze_readme(owner, repo)
            features = self.analyze_features(file_tree, source_files, readme)
            quality = self.calculate_quality_score(file_tree, readme, features)
        except RepositoryAnalysisError as e:
            logger.error(f"Failed to analyze repository: {e}")
            raise RepositoryAnalysisError(f"Repository analysis failed: {e.args[0]}") from e
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Unexpected GitHub API payload for {owner}/{repo}: {e}")
            raise RepositoryAnalysisError(
                f"Repository analysis failed: unexpected GitHub API payload ({e})"
            ) from e

        logger.info(
            f"Analysis completed for {owner}/{repo}: {len(file_tree)} tree entries, "
            f"{len(source_files)} source files, quality {quality.score}/10"
        )
        return RepositoryAnalysis(
            metadata=metadata,
            file_tree=file_tree,
            tech_stack=tech_stack,
            api_patterns=api_patterns,
            source_files=source_files,
            features=features,
            readme=readme,
            quality=quality,
        )

    def get_file_tree(self, owner: str, repo: str, path: str = "") -> list[FileTreeNode]:
        """List the repository tree recursively, three directory levels deep.

        A directory that cannot be listed contributes nothing.
        """
        try:
            data = self.client.get_contents(owner, repo, path)
        except RepositoryAnalysisError as e:
            logger.warning(f"Failed to fetch file tree for path '{path}': {e}")
            return []

        items = data if isinstance(data, list) else [data]
        nodes: list[FileTreeNode] = []

        for item in items:
            if not isinstance(item, dict):
                continue
            node = FileTreeNode(
                path=item.get("path", ""),
                type=item.get("type", "file"),
                size=item.get("size") or 0,
                download_url=item.get("download_url"),
            )
            if node.type == "file":
                node.extension = _extension(item.get("name") or node.name)
            nodes.append(node)

            if node.type == "dir" and len(path.split("/")) < MAX_TREE_DEPTH:
                nodes.extend(self.get_file_tree(owner, repo, node.path))

        return nodes

    def _fetch(self, owner: str, repo: str, path: str) -> Optional[str]:
        try:
            return self.client.get_file_content(owner, repo, path)
        except RepositoryAnalysisError as e:
            logger.debug(f"Failed to fetch {path}: {e}")
            return None

    def detect_tech_stack(
        self, owner: str, repo: str, file_tree: list[FileTreeNode]
    ) -> TechnologyStack:
        """Detect languages, frameworks, tools and databases."""
        languages: list[str] = []
        frameworks: list[str] = []
        databases: list[str] = []
        tools: list[str] = []
        package_managers: list[str] = []
        build_systems: list[str] = []

        def add(target: list[str], value: str) -> None:
            if value not in target:
                target.append(value)

        for node in file_tree:
            if node.type != "file" or not node.extension:
                continue
            for language, extensions in LANGUAGE_EXTENSIONS.items():
                if node.extension in extensions or node.name in extensions:
                    add(languages, language)

        for node in file_tree:
            if node.name not in MAIN_FILE_PATTERNS:
                continue
            path = node.path
            if path.endswith("pom.xml"):
                add(build_systems, "Maven")
                add(package_managers, "Maven")
                continue
            if path.endswith("build.gradle"):
                add(build_systems, "Gradle")
                add(package_managers, "Gradle")
                continue
            if not path.endswith(("package.json", "requirements.txt", "Cargo.toml")):
                continue

            content = self._fetch(owner, repo, path)
            if content is None:
                continue

            if path.endswith("package.json"):
                try:
                    package_data = json.loads(content)
                except json.JSONDecodeError as e:
                    logger.debug(f"Failed to parse {path}: {e}")
                    continue
                for name in _node_frameworks(package_data):
                    add(frameworks, name)
                for name in _node_tools(package_data):
                    add(tools, name)
                add(package_managers, "npm")
            elif path.endswith("requirements.txt"):
                for name in _python_frameworks(content):
                    add(frameworks, name)
                add(package_managers, "pip")
            else:
                for keyword, name in RUST_FRAMEWORKS.items():
                    if keyword in content:
                        add(frameworks, name)
                add(package_managers, "cargo")

        db_files = [
            node for node in file_tree
            if node.type == "file" and any(
                marker in node.path
                for marker in ("docker-compose", "database", ".env", "config")
            )
        ]
        for node in db_files:
            content = self._fetch(owner, repo, node.path)
            if content is None:
                continue
            lowered = content.lower()
            for database, keywords in DATABASE_KEYWORDS.items():
                if any(keyword in lowered for keyword in keywords):
                    add(databases, database)

        confidence = 0.5
        if languages:
            confidence += 0.2
        if frameworks:
            confidence += 0.2
        if any(node.path == "package.json" for node in file_tree):
            confidence += 0.1

        return TechnologyStack(
            languages=languages,
            frameworks=frameworks,
            databases=databases,
            tools=tools,
            package_managers=package_managers,
            build_systems=build_systems,
            confidence=min(round(confidence, 2), 1.0),
        )

    def get_main_source_files(
        self, owner: str, repo: str, file_tree: list[FileTreeNode]
    ) -> list[SourceFile]:
        """Fetch the highest-priority files, at most fifteen."""
        candidates = sorted(
            (node for node in file_tree if node.type == "file"),
            key=lambda node: get_file_priority(node.path),
            reverse=True,
        )[:MAX_SOURCE_FILES]

        files = []
        for node in candidates:
            content = self._fetch(owner, repo, node.path)
            if content is None:
                continue
            files.append(SourceFile(
                path=node.path,
                content=content,
                size=node.size,
                type=classify_file_type(node.path),
                language=detect_file_language(node.path),
            ))
        return files

    def extract_api_patterns(self, source_files: list[SourceFile]) -> list[ApiPattern]:
        """Detect REST routes, GraphQL and WebSocket usage."""
        patterns: list[ApiPattern] = []
        endpoints: list[str] = []
        methods: list[str] = []
        graphql = False
        websocket = False

        for source in source_files:
            content = source.content.lower()

            for regex in REST_ROUTE_PATTERNS:
                for method, endpoint in regex.findall(content):
                    methods.append(method.upper())
                    endpoints.append(endpoint)
            endpoints.extend(ROUTE_CALL_PATTERN.findall(content))

            if "graphql" in content or "apollo" in content or "type query" in content:
                graphql = True
            if "websocket" in content or "socket.io" in content or "ws://" in content:
                websocket = True

        if websocket:
            patterns.append(ApiPattern(
                type="WebSocket",
                endpoints=["WebSocket connection detected"],
                methods=["CONNECT", "MESSAGE"],
                patterns=["Real-time communication"],
                confidence=0.8,
            ))

        if endpoints:
            patterns.append(ApiPattern(
                type="REST",
                endpoints=list(dict.fromkeys(endpoints)),
                methods=list(dict.fromkeys(methods)),
                patterns=["RESTful API"],
                confidence=0.9 if len(endpoints) > 3 else 0.7,
            ))

        if graphql:
            patterns.append(ApiPattern(
                type="GraphQL",
                endpoints=["GraphQL endpoint detected"],
                methods=["QUERY", "MUTATION", "SUBSCRIPTION"],
                patterns=["GraphQL API"],
                confidence=0.8,
            ))

        return patterns

    def analyze_readme(self, owner: str, repo: str) -> ReadmeAnalysis:
        """Extract features, install and usage snippets from README.md."""
        try:
            content = self.client.get_file_content(owner, repo, "README.md")
        except RepositoryAnalysisError:
            logger.warning(f"README.md not found for {owner}/{repo}")
            return ReadmeAnalysis()

        return parse_readme(content)

    def analyze_features(
        self,
        file_tree: list[FileTreeNode],
        source_files: list[SourceFile],
        readme: ReadmeAnalysis,
    ) -> RepositoryFeatures:
        """Infer what kind of software the repository is."""
        has_api = any(
            "app.get" in f.content
            or "router." in f.content
            or "@Controller" in f.content
            or "def get" in f.content
            or ("func " in f.content and "http" in f.content)
            for f in source_files
        )
        has_cli = any(
            "process.argv" in f.content
            or "argparse" in f.content
            or "commander" in f.content
            or "cli" in f.path
            for f in source_files
        )
        has_database = any(
            "database" in f.content or "db." in f.content or "connection" in f.content
            for f in source_files
        )
        paths = [node.path for node in file_tree]
        has_tests = any("test" in p or "spec" in p or "__tests__" in p for p in paths)
        has_documentation = any("docs" in p or p.endswith(".md") for p in paths)
        has_docker = any("Dockerfile" in p or "docker-compose" in p for p in paths)
        has_ci = any(
            ".github/workflows" in p or ".gitlab-ci" in p or ".travis.yml" in p or "Jenkinsfile" in p
            for p in paths
        )

        features = []
        if has_api:
            features.append("REST API")
        if has_cli:
            features.append("Command Line Interface")
        if has_database:
            features.append("Database Integration")
        if has_tests:
            features.append("Test Suite")
        if has_documentation:
            features.append("Documentation")
        if has_docker:
            features.append("Docker Support")
        if has_ci:
            features.append("Continuous Integration")

        return RepositoryFeatures(
            has_api=has_api,
            has_cli=has_cli,
            has_database=has_database,
            has_tests=has_tests,
            has_documentation=has_documentation,
            has_docker=has_docker,
            has_ci=has_ci,
            features=features,
        )

    def calculate_quality_score(
        self,
        file_tree: list[FileTreeNode],
        readme: ReadmeAnalysis,
        features: RepositoryFeatures,
    ) -> QualityMetrics:
        """Score repository hygiene out of 10."""
        lowered = [node.path.lower() for node in file_tree]
        metrics = QualityMetrics(
            has_readme=bool(readme.content),
            has_tests=features.has_tests,
            has_license=any("license" in p for p in lowered),
            has_contributing=any("contributing" in p for p in lowered),
            has_changelog=any("changelog" in p for p in lowered),
            has_documentation=features.has_documentation,
        )

        score = 0
        if metrics.has_readme:
            score += 2
        if metrics.has_tests:
            score += 2
        for flag in (
            metrics.has_license,
            metrics.has_contributing,
            metrics.has_changelog,
            metrics.has_documentation,
            features.has_ci,
            features.has_docker,
        ):
            if flag:
                score += 1
        metrics.score = score
        return metrics

    def extract_code_examples(self, github_url: str, max_files: int = 5) -> list[dict]:
        """Fetch representative source files, main entry points first.

        Returns:
            List of dicts with ``file``, ``content`` (first 2000 characters)
            and ``language``. Failures yield an empty list.
        """
        try:
            owner, repo = parse_github_url(github_url)
        except InvalidRepositoryUrlError as e:
            logger.error(f"Failed to extract code examples: {e}")
            return []

        tree = self.get_file_tree(owner, repo)
        priority = [
            node for node in tree
            if any(node.path.endswith(pattern) for pattern in MAIN_FILE_PATTERNS)
        ]
        sources = [
            node for node in tree
            if node.type == "file"
            and "test" not in node.path
            and "spec" not in node.path
            and "node_modules" not in node.path
            and ".md" not in node.path
            and node.path.endswith((".ts", ".js", ".py", ".go", ".rs", ".java"))
        ]

        selected: list[FileTreeNode] = []
        for node in priority[:2] + sources[:max_files]:
            if node not in selected:
                selected.append(node)
        selected = selected[:max_files]

        examples = []
        for node in selected:
            content = self._fetch(owner, repo, node.path)
            if content is None:
                logger.warning(f"Failed to fetch {node.path}")
                continue
            ext = node.path.rsplit(".", 1)[-1] if "." in node.path else ""
            examples.append({
                "file": node.path,
                "content": content[:CODE_EXAMPLE_CHARS],
                "language": EXTENSION_LANGUAGES.get(ext, ext.upper()),
            })
        return examples

    def analyze_test_patterns(self, github_url: str) -> list[dict]:
        """Detect test frameworks from test file names and package.json.

        Returns:
            List of dicts with ``framework``, ``pattern`` and ``examples``.
        """
        try:
            owner, repo = parse_github_url(github_url)
        except InvalidRepositoryUrlError as e:
            logger.error(f"Failed to analyze test patterns: {e}")
            return []

        tree = self.get_file_tree(owner, repo)
        test_files = [
            node.path for node in tree
            if "test" in node.path or "spec" in node.path or "__tests__" in node.path
        ]
        if not test_files:
            return []

        patterns = []
        if any(".test." in p or ".spec." in p for p in test_files) and any(
            node.path == "package.json" for node in tree
        ):
            content = self._fetch(owner, repo, "package.json")
            dev_deps: dict = {}
            if content:
                try:
                    dev_deps = json.loads(content).get("devDependencies") or {}
                except json.JSONDecodeError as e:
                    logger.warning(f"Failed to analyze package.json: {e}")
            if "jest" in dev_deps:
                patterns.append({"framework": "Jest", "pattern": "Unit Tests", "examples": test_files[:3]})
            if "mocha" in dev_deps:
                patterns.append({"framework": "Mocha", "pattern": "Unit Tests", "examples": test_files[:3]})
            if "@playwright/test" in dev_deps:
                patterns.append({
                    "framework": "Playwright",
                    "pattern": "E2E Tests",
                    "examples": [p for p in test_files if "e2e" in p][:3],
                })

        if any(p.endswith(".py") for p in test_files):
            patterns.append({
                "framework": "pytest",
                "pattern": "Unit Tests",
                "examples": [p for p in test_files if "test" in p][:3],
            })

        go_tests = [p for p in test_files if p.endswith("_test.go")]
        if go_tests:
            patterns.append({"framework": "Go testing", "pattern": "Unit Tests", "examples": go_tests[:3]})

        return patterns

    def extract_api_usage_patterns(self, github_url: str) -> list[dict]:
        """Pull concrete route definitions from up to three route-like files.

        Returns:
            At most ten dicts with ``endpoint``, ``method``, ``parameters``
            and ``example_usage``.
        """
        try:
            owner, repo = parse_github_url(github_url)
        except InvalidRepositoryUrlError as e:
            logger.error(f"Failed to extract API usage patterns: {e}")
            return []

        tree = self.get_file_tree(owner, repo)
        route_files = [
            node for node in tree
            if any(marker in node.path for marker in ("route", "controller", "api", "endpoint"))
        ][:3]

        usages = []
        for node in route_files:
            content = self._fetch(owner, repo, node.path)
            if content is None:
                continue
            for regex in (_EXPRESS_ROUTE_RE, _FASTAPI_ROUTE_RE):
                for match in list(regex.finditer(content))[:5]:
                    usages.append({
                        "endpoint": match.group(2),
                        "method": match.group(1).upper(),
                        "parameters": {},
                        "example_usage": match.group(0),
                    })

        return usages[:MAX_API_USAGE_PATTERNS]


def _node_frameworks(package_data: dict) -> list[str]:
    deps = {**(package_data.get("dependencies") or {}), **(package_data.get("devDependencies") or {})}
    return [name for dep, name in NODE_FRAMEWORKS.items() if dep in deps]


def _node_tools(package_data: dict) -> list[str]:
    deps = {**(package_data.get("dependencies") or {}), **(package_data.get("devDependencies") or {})}
    return [name for dep, name in NODE_TOOLS.items() if dep in deps]


def _python_frameworks(requirements: str) -> list[str]:
    found = []
    for line in requirements.splitlines():
        package = re.split(r"==|>=|~=|<=|\[|;", line)[0].strip().lower()
        name = PYTHON_FRAMEWORKS.get(package)
        if name and name not in found:
            found.append(name)
    return found


def parse_readme(content: str) -> ReadmeAnalysis:
    """Extract list-item features plus install and usage code blocks."""
    features = []
    for line in content.splitlines():
        if _LIST_ITEM_RE.match(line):
            features.append(_LIST_ITEM_RE.sub("", line, count=1).strip())

    def blocks(section_re: re.Pattern) -> list[str]:
        section = section_re.search(content)
        if not section:
            return []
        return [block.replace("```", "").strip() for block in _CODE_BLOCK_RE.findall(section.group(0))]

    return ReadmeAnalysis(
        content=content,
        extracted_features=features[:MAX_README_FEATURES],
        installation=blocks(_INSTALL_SECTION_RE),
        usage=blocks(_USAGE_SECTION_RE),
    )


def summarize(analysis: RepositoryAnalysis) -> str:
    """Plain-text repository context shared by the discovery and generation prompts."""
    metadata = analysis.metadata
    stack = analysis.tech_stack
    lines = [
        f"Repository: {metadata.full_name}",
        f"Description: {metadata.description or 'No description'}",
        f"Primary Language: {metadata.language or 'Unknown'}",
        f"Languages: {', '.join(stack.languages) or 'Unknown'}",
        f"Frameworks: {', '.join(stack.frameworks) or 'None detected'}",
        f"Databases: {', '.join(stack.databases) or 'None detected'}",
        f"Tools: {', '.join(stack.tools) or 'None detected'}",
        f"Topics: {', '.join(metadata.topics) or 'None'}",
        f"Features: {', '.join(analysis.features.features) or 'None detected'}",
        f"Quality Score: {analysis.quality.score}/10",
    ]
    for pattern in analysis.api_patterns:
        endpoints = ", ".join(pattern.endpoints[:10])
        lines.append(f"API ({pattern.type}): {endpoints}")
    if analysis.readme.extracted_features:
        lines.append("README Features:")
        lines.extend(f"- {feature}" for feature in analysis.readme.extracted_features)
    return "\n".join(lines)
