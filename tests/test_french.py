# file: tests/test_french.py
from app.tools.french import is_french_text

def test_accent_is_enough():
    assert is_french_text("Graphiste basée à Nantes")

def test_fr_domain_marker():
    assert is_french_text("Portfolio www.studio-nova.fr")

def test_stop_word():
    assert is_french_text("Consultant SEO pour PME")

def test_english_and_empty_fail():
    assert not is_french_text("Freelance SEO consultant in London")
    assert not is_french_text("   ")
    assert not is_french_text(None)
