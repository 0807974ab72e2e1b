import random
import string

DEFAULT_POSITION = 1
DEFAULT_LIMIT = -1
DEFAULT_MAX_ENTROPY = 3.5
DEFAULT_WORKERS = 10
DEFAULT_QUEUE_SIZE = 100

BASE_DOMAINS = [
    "example.com",
    "test-site.org",
    "dev.example.net",
    "staging.company.io",
    "api.service.com",
    "shop.retail.co",
]

# Segments that show up on almost every site
COMMON_PATH_SEGMENTS = [
    "api",
    "static",
    "assets",
    "images",
    "blog",
    "products",
    "search",
    "account",
    "help",
    "docs",
]

# Human-chosen names that should surface as rare
RARE_PATH_SEGMENTS = [
    "backup",
    "internal",
    "debug",
    "legacy",
    "staff",
    "export",
    "phpinfo",
    "old-admin",
    "testing",
    "private",
]

TAIL_SEGMENTS = ["index.html", "list", "view", "edit", "v1", "v2", "main.css"]

QUERY_STRINGS = ["", "", "", "?page=2", "?ref=newsletter", "?id=17&sort=asc"]


def generate_id(length: int = 16) -> str:
    """Random lowercase hex token, like a hash prefix or session id."""
    return "".join(random.choices("0123456789abcdef", k=length))


def generate_random_string(length: int = 24) -> str:
    return "".join(random.choices(string.ascii_letters + string.digits, k=length))
