import re
import unicodedata


def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_identifier(text: str) -> str:
    """Forma canónica para comparar identificadores (IBAN, nº de conta, aliases).

    Nunca usar para apresentação.
    """
    if not text:
        return ""
    s = strip_accents(text)
    s = re.sub(r"[^a-z0-9]", "", s, flags=re.IGNORECASE | re.ASCII)
    return s.lower()


def humanize_document_name(original_name: str) -> str:
    """`fatura_ginasio-maio.pdf` -> `Fatura Ginasio Maio`"""
    without_extension = re.sub(r"\.[^/.]+$", "", original_name or "")
    with_spaces = re.sub(r"[_-]+", " ", without_extension)
    with_spaces = re.sub(r"\s+", " ", with_spaces).strip()
    if not with_spaces:
        return "Documento"
    return " ".join(segment[:1].upper() + segment[1:] for segment in with_spaces.split(" "))
