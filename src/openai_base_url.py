import re
from typing import Optional
from urllib.parse import urlsplit, urlunsplit


DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
OPENAI_HOST = "api.openai.com"
LOCAL_HOSTS = {"localhost", "127.0.0.1"}

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)


def is_local_host(host: str) -> bool:
    return host in LOCAL_HOSTS or host.endswith(".local")


def normalize_openai_base_url(value: Optional[str] = None) -> str:
    """Normaliza o URL base configurado pelo utilizador.

    - vazio/inválido -> DEFAULT_OPENAI_BASE_URL
    - sem esquema -> https://
    - api.openai.com é sempre https e o caminho começa por /v1
    - restantes hosts (locais incluídos) mantêm o esquema; só barras
      repetidas/finais e o fragmento são removidos
    """
    if not value or not value.strip():
        return DEFAULT_OPENAI_BASE_URL

    trimmed = value.strip()
    candidate = trimmed if _SCHEME_RE.match(trimmed) else f"https://{trimmed}"
    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError:
        return DEFAULT_OPENAI_BASE_URL

    host = (parts.hostname or "").lower()
    scheme = parts.scheme.lower()
    if not host or scheme not in ("http", "https"):
        return DEFAULT_OPENAI_BASE_URL

    local = is_local_host(host)
    if "." not in host and not local:
        return DEFAULT_OPENAI_BASE_URL

    path = re.sub(r"/{2,}", "/", parts.path).rstrip("/")

    if host == OPENAI_HOST:
        scheme = "https"
        if path != "/v1" and not path.startswith("/v1/"):
            path = "/v1" + path

    netloc = f"{host}:{port}" if port else host
    return urlunsplit((scheme, netloc, path, parts.query, ""))
