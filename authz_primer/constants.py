"""Global constants for lessons, linting and the demo API."""
import os

PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))
BUNDLED_LESSONS_DIR = os.path.join(PACKAGE_DIR, "lessons")
TEMPLATES_DIR = os.path.join(PACKAGE_DIR, "templates")

DEFAULT_DATABASE_URL = "sqlite:///./data/authz_primer.db"
DEFAULT_INDEX_DIR = "./data/whoosh_index"

LESSON_SUFFIX = ".md"

# Sections every copy of the lesson carries, in order
LESSON_SECTIONS = (
    "Introduction",
    "Key Vocab",
    "First Pass",
    "Refactor",
    "Skipping Filters",
    "Conclusion",
    "Check For Understanding",
    "Resources",
)

EXTERNAL_SCHEMES = ("http://", "https://", "mailto:")
EXTERNAL_LINK_TIMEOUT = 10
EXTERNAL_LINK_WORKERS = 8

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"

CHECK_LINKS = "links"
CHECK_CODE = "code-blocks"
CHECK_DISCLOSURES = "disclosures"
CHECK_CONSISTENCY = "consistency"

MIN_SEARCH_QUERY_LENGTH = 2
DEFAULT_SEARCH_LIMIT = 20

SESSION_USER_KEY = "user_id"
DEFAULT_EXEMPT_ENDPOINTS = ("document_list",)

MAX_TITLE_LENGTH = 200
MAX_USERNAME_LENGTH = 64

DEMO_USERNAME = "ada"
DEMO_DOCUMENTS = (
    ("Welcome", "Anyone can see that this document exists."),
    ("Quarterly numbers", "Only signed-in users can read the body of a document."),
    ("Roadmap", "Editing requires a session with a user_id."),
)
