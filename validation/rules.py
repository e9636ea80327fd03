"""Declarative security rule data for upload scanning.

Everything the scanner treats as policy lives here as data: suspicious content
patterns with the file domains in which they are known to be noisy, the named
exceptions that make a multi-dot filename legitimate, and the keyword lists used
to recognise development-project uploads.
"""

import re
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Pattern, Tuple

from models.errors import ErrorSeverity
from models.validation import FileDomain


MEDIA, IMAGE, ARCHIVE, DEVELOPMENT_PROJECT = (
    FileDomain.MEDIA,
    FileDomain.IMAGE,
    FileDomain.ARCHIVE,
    FileDomain.DEVELOPMENT_PROJECT,
)


# --- Extension and MIME tables ---

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".tif", ".tiff", ".ico"})
MEDIA_EXTENSIONS = frozenset({
    ".mp4", ".webm", ".mov", ".avi", ".mkv", ".m4v",
    ".mp3", ".wav", ".ogg", ".flac", ".m4a", ".aac",
})
ARCHIVE_EXTENSIONS = frozenset({".zip", ".rar", ".7z", ".tar", ".gz"})

# Extensions in which a <script tag is expected
SCRIPT_ALLOWED_EXTENSIONS = frozenset({".html", ".htm", ".zip", ".rar", ".7z"})

ARCHIVE_MIME_TYPES = frozenset({
    "application/zip",
    "application/x-rar-compressed",
    "application/x-7z-compressed",
    "application/gzip",
    "application/x-tar",
    "application/x-bzip2",
    "application/x-xz",
})

ZIP_FAMILY_MIME_TYPES = frozenset({
    "application/zip",
    "application/x-zip-compressed",
    "application/x-zip",
    "multipart/x-zip",
    "application/java-archive",
    "application/epub+zip",
    "application/vnd.oasis.opendocument.text",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
})

GENERIC_BINARY_MIME_TYPES = frozenset({"application/octet-stream", "binary/octet-stream"})

# Expected MIME type for a claimed extension
EXTENSION_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".zip": "application/zip",
    ".rar": "application/x-rar-compressed",
    ".7z": "application/x-7z-compressed",
    ".tar": "application/x-tar",
    ".gz": "application/gzip",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".txt": "text/plain",
    ".csv": "text/csv",
}


# --- Filename checks ---

DANGEROUS_EXTENSIONS = ("exe", "scr", "bat", "cmd", "com", "pif", "vbs", "js", "jar", "app")

# A dangerous extension as any dot-separated segment after the first
DANGEROUS_SUFFIX_PATTERN = re.compile(
    r"\.(?:" + "|".join(DANGEROUS_EXTENSIONS) + r")(?=\.|$)", re.IGNORECASE
)


@dataclass(frozen=True)
class DoubleExtensionException:
    """A named multi-dot filename pattern that is not masquerading."""
    name: str
    pattern: Pattern[str]

    def explain(self, filename: str) -> str:
        """Rewrite every dot this exception accounts for into an underscore."""
        return self.pattern.sub(lambda match: match.group(0).replace(".", "_"), filename)


# Evaluated in priority order
DOUBLE_EXTENSION_EXCEPTIONS: Tuple[DoubleExtensionException, ...] = (
    DoubleExtensionException(
        "compound_archive",
        re.compile(r"\.tar(?=\.(?:gz|bz2|xz|zst)$)", re.IGNORECASE),
    ),
    DoubleExtensionException(
        "iso_date",
        re.compile(r"\.?\d{4}[.-]\d{2}[.-]\d{2}(?:[T_ ]\d{2}[.:-]?\d{2}(?:[.:-]?\d{2})?)?"),
    ),
    DoubleExtensionException(
        "semantic_version",
        re.compile(r"\.?v?\d+(?:\.\d+){1,3}(?:-[0-9a-z]+)?", re.IGNORECASE),
    ),
    DoubleExtensionException(
        "environment_suffix",
        re.compile(
            r"\.(?:min|prod|production|dev|development|test|backup|bak|staging|local|final|draft|orig)(?=\.)",
            re.IGNORECASE,
        ),
    ),
    DoubleExtensionException(
        "framework_role",
        re.compile(
            r"\.(?:component|module|service|controller|directive|pipe|guard|spec|stories|story|styles?|config|"
            r"routes?|page|layout|store|slice|types|d|model|schema|hooks?|context|e2e|setup|server|client)(?=\.)",
            re.IGNORECASE,
        ),
    ),
)


def count_extensions(filename: str) -> int:
    """Number of dot-separated extensions after the base name (".env" has none)."""
    return max(len(filename.lstrip(".").split(".")) - 1, 0)


def explain_multiple_extensions(
    filename: str,
    exceptions: Iterable[DoubleExtensionException] = DOUBLE_EXTENSION_EXCEPTIONS,
) -> Optional[List[str]]:
    """
    Account for the extra dots of a multi-extension filename.

    Args:
        filename: Client supplied file name
        exceptions: Named exceptions in priority order

    Returns:
        Names of the exceptions that explain every extra dot, or None when the
        name still carries more than one extension (potential masquerading)
    """
    working = filename
    applied: List[str] = []
    for exception in exceptions:
        if count_extensions(working) <= 1:
            break
        explained = exception.explain(working)
        if explained != working:
            applied.append(exception.name)
            working = explained
    if count_extensions(working) <= 1:
        return applied
    return None


# --- Content pattern rules ---

@dataclass(frozen=True)
class PatternRule:
    """A suspicious content signature and the domains in which it is suppressed."""
    name: str
    pattern: Pattern[str]
    description: str
    severity: ErrorSeverity
    suppressed_in: FrozenSet[FileDomain] = frozenset()

    def applies_to(self, domains: FrozenSet[FileDomain]) -> bool:
        return not (self.suppressed_in & domains)

    def matches(self, *texts: str) -> bool:
        return any(self.pattern.search(text) for text in texts)


SUSPICIOUS_PATTERN_RULES: Tuple[PatternRule, ...] = (
    # Script injection
    PatternRule(
        "script_tag",
        re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE),
        "embedded <script> block",
        ErrorSeverity.HIGH,
        frozenset({ARCHIVE, DEVELOPMENT_PROJECT}),
    ),
    PatternRule(
        "javascript_uri",
        re.compile(r"javascript:", re.IGNORECASE),
        "javascript: URI",
        ErrorSeverity.HIGH,
        frozenset({ARCHIVE, DEVELOPMENT_PROJECT}),
    ),
    PatternRule(
        "vbscript_uri",
        re.compile(r"vbscript:", re.IGNORECASE),
        "vbscript: URI",
        ErrorSeverity.HIGH,
    ),
    PatternRule(
        "html_data_uri",
        re.compile(r"data:text/html", re.IGNORECASE),
        "data:text/html URI",
        ErrorSeverity.HIGH,
        frozenset({ARCHIVE, DEVELOPMENT_PROJECT}),
    ),
    PatternRule(
        "inline_event_handler",
        re.compile(r"<[a-z][^<>]{0,512}?\son[a-z]{3,}\s*=", re.IGNORECASE),
        "inline event handler attribute",
        ErrorSeverity.MEDIUM,
        frozenset({MEDIA, IMAGE, ARCHIVE, DEVELOPMENT_PROJECT}),
    ),
    # Executable signatures
    PatternRule(
        "windows_pe_header",
        re.compile(r"^MZ"),
        "Windows PE executable header",
        ErrorSeverity.CRITICAL,
    ),
    PatternRule(
        "linux_elf_header",
        re.compile(r"^\x7fELF"),
        "Linux ELF executable header",
        ErrorSeverity.CRITICAL,
    ),
    PatternRule(
        "zip_wrapped_executable",
        re.compile(r"^PK\x03\x04[\s\S]{26}[^\x00]{0,255}?\.exe", re.IGNORECASE),
        "ZIP archive whose first entry is an .exe",
        ErrorSeverity.CRITICAL,
    ),
    PatternRule(
        "jpeg_with_script",
        re.compile(r"^\xff\xd8\xff[\s\S]*?<script", re.IGNORECASE),
        "JPEG carrying a script payload",
        ErrorSeverity.HIGH,
    ),
    # Malicious file names
    PatternRule(
        "autorun_inf",
        re.compile(r"autorun\.inf", re.IGNORECASE),
        "autorun.inf reference",
        ErrorSeverity.HIGH,
    ),
    PatternRule(
        "desktop_ini",
        re.compile(r"desktop\.ini", re.IGNORECASE),
        "desktop.ini reference",
        ErrorSeverity.LOW,
        frozenset({ARCHIVE, DEVELOPMENT_PROJECT}),
    ),
    PatternRule(
        "thumbs_db",
        re.compile(r"thumbs\.db", re.IGNORECASE),
        "thumbs.db reference",
        ErrorSeverity.LOW,
        frozenset({ARCHIVE, DEVELOPMENT_PROJECT}),
    ),
    # Document macros
    PatternRule(
        "office_word_macro",
        re.compile(r"Microsoft Office Word.*Macro", re.IGNORECASE),
        "Microsoft Word macro marker",
        ErrorSeverity.HIGH,
        frozenset({MEDIA, IMAGE, ARCHIVE}),
    ),
    PatternRule(
        "vba_project",
        re.compile(r"VBA.*Project", re.IGNORECASE),
        "VBA project marker",
        ErrorSeverity.HIGH,
        frozenset({MEDIA, IMAGE, ARCHIVE}),
    ),
)

# Standalone checks
EMBEDDED_EXECUTABLE_STUB = b"This program cannot be run in DOS mode"
SCRIPT_OPEN_TAG = re.compile(r"<script", re.IGNORECASE)
JAVASCRIPT_URI = re.compile(r"javascript:", re.IGNORECASE)
OFFICE_MACRO_MARKERS = re.compile(r"Microsoft Office.*Macro|VBA.*Project", re.IGNORECASE)

# Executable entry names inside an archive: the name is followed by a control
# character (tar padding, zip header fields) or the next zip record header
ARCHIVE_EXECUTABLE_ENTRY = re.compile(
    rb"\.(?:exe|scr|bat|cmd|pif|vbs|msi)(?:[\x00-\x1f]|PK[\x01-\x08])", re.IGNORECASE
)


# --- Development project classification ---

DEFAULT_DEV_PROJECT_KEYWORDS: Tuple[str, ...] = (
    "app", "react", "src", "source", "project", "frontend", "backend",
    "vue", "angular", "svelte", "next", "nuxt", "node", "webapp", "website",
    "code", "repo", "build", "dist", "components",
)

DEV_PROJECT_CONTENT_MARKERS: Tuple[Pattern[str], ...] = (
    re.compile(r"package(?:-lock)?\.json"),
    re.compile(r"node_modules/"),
    re.compile(r"tsconfig\.json"),
    re.compile(r"(?:webpack|vite|babel|eslint)\.config"),
    re.compile(r"\bimport\s+[\w*{}\s,]{1,200}?\s+from\s+['\"]"),
    re.compile(r"\b(?:React|ReactDOM|Vue|Angular|Svelte|Next\.js)\b"),
    re.compile(r"(?:requirements\.txt|pyproject\.toml|Cargo\.toml|go\.mod)"),
)
