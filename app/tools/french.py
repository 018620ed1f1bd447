import re

_ACCENTS = re.compile(r"[àâäçéèêëîïôöùûüÿœæ]")
_FR_DOMAIN = re.compile(r"\.fr\b")
_FRENCH_WORDS = re.compile(
    r"\b(le|la|les|des|du|de|un|une|et|pour|avec|sur|dans|vous|nous|rendez[- ]vous|appel|"
    r"calendrier|réunion|rdv|bonjour|merci|entreprise|client|prestataire)\b"
)

def is_french_text(text: str | None) -> bool:
    """Cheap heuristic: one accent, a .fr marker or one common French word is enough."""
    t = (text or "").lower()
    if not t.strip():
        return False
    if _ACCENTS.search(t) or _FR_DOMAIN.search(t):
        return True
    return _FRENCH_WORDS.search(t) is not None
