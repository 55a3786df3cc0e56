"""
Normalización de queries para la cache de búsqueda web.

"Best wedding venues in Lisbon" y "lisbon wedding venues best?" colapsan
a la misma clave: minúsculas, sin puntuación, sin stopwords (PT/EN/ES),
tokens ordenados y hash SHA-256.
"""
import hashlib

_PUNCTUATION = '.,!?;:¿¡"“”‘’\'()[]{}'
_PUNCT_TABLE = str.maketrans("", "", _PUNCTUATION)

_STOPWORDS_PT = {
    "o", "a", "os", "as", "um", "uma", "de", "do", "da", "dos", "das",
    "em", "no", "na", "nos", "nas", "por", "para", "com", "sem",
    "é", "são", "está", "estão", "foi", "eram", "ser", "estar",
    "qual", "quais", "como", "onde", "quando", "que", "quem",
    "este", "esse", "aquele", "isso", "isto", "aquilo",
    "me", "te", "se", "lhe", "vos", "lhes",
}

_STOPWORDS_EN = {
    "the", "a", "an", "in", "on", "at", "to", "for", "of", "with", "by",
    "is", "are", "was", "were", "be", "been", "being",
    "what", "which", "how", "where", "when", "who", "whom",
    "this", "that", "these", "those",
    "i", "you", "he", "she", "it", "we", "they",
    "my", "your", "his", "her", "its", "our", "their",
}

_STOPWORDS_ES = {
    "el", "la", "los", "las", "un", "una", "unos", "unas", "de", "del", "al",
    "en", "con", "sin", "por", "para",
    "es", "son", "está", "están", "fue", "fueron", "ser", "estar",
    "cuál", "cuáles", "cómo", "dónde", "cuándo", "qué", "quién", "quiénes",
    "este", "esta", "estos", "estas", "ese", "esa", "esos", "esas",
    "aquel", "aquella", "aquellos", "aquellas", "esto", "eso", "aquello",
    "me", "te", "se", "le", "nos", "os", "les",
    "mi", "tu", "su", "mis", "tus", "sus",
}

STOPWORDS = frozenset(_STOPWORDS_PT | _STOPWORDS_EN | _STOPWORDS_ES)

MIN_TOKEN_LENGTH = 3


def normalize(query: str) -> str:
    """Forma canónica de *query*. Idempotente e insensible al orden."""
    cleaned = query.lower().strip().translate(_PUNCT_TABLE)
    tokens = [
        word for word in cleaned.split()
        if len(word) >= MIN_TOKEN_LENGTH and word not in STOPWORDS
    ]
    return " ".join(sorted(tokens))


def hash_query(normalized: str) -> str:
    """SHA-256 hex del string normalizado (clave primaria de la cache)."""
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def cache_key(query: str) -> tuple[str, str]:
    """(normalized, hash) para una query cruda."""
    normalized = normalize(query)
    return normalized, hash_query(normalized)
