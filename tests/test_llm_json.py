# file: tests/test_llm_json.py
import pytest
import requests
from unittest.mock import Mock
from app.errors import ModelOutputError
from app.tools import llm as llm_module
from app.tools.llm import LLMClient, escape_control_chars, ollama_reachable, parse_json_reply

def test_strict_reply_is_not_repaired():
    reply = parse_json_reply('{"object": "Bonjour", "content": "a\\nb"}')
    assert reply.data == {"object": "Bonjour", "content": "a\nb"}
    assert reply.repaired is False

def test_fences_and_chatter_are_stripped():
    reply = parse_json_reply('Voici :\n```json\n{"a": 1}\n```')
    assert reply.data == {"a": 1}

def test_raw_control_characters_are_escaped():
    raw = '{"content": "Bonjour,\n\n\tMerci", "cta": "x"}'
    reply = parse_json_reply(raw)
    assert reply.repaired is True
    assert reply.data["content"] == "Bonjour,\n\n\tMerci"

def test_existing_escapes_and_layout_preserved():
    raw = '{\n  "a": "ligne\\nsuite \\"cite\\"\x01"\n}'
    fixed = escape_control_chars(raw)
    assert fixed.startswith("{\n  ")
    assert '\\"cite\\"' in fixed
    assert "\\u0001" in fixed

def test_unrepairable_reply_raises():
    with pytest.raises(ModelOutputError):
        parse_json_reply('{"object": "ok", content: }')

def test_think_block_removed_from_reply():
    data = {"message": {"content": "<think>hmm</think>\n{\"a\": 1}"}}
    assert parse_json_reply(LLMClient._extract(data)).data == {"a": 1}

def test_ollama_and_openai_payloads():
    ollama = LLMClient("ollama", "http://x", "m")
    path, body = ollama._payload("sys", "usr", 0.5, 300)
    assert path == "/api/chat"
    assert body["options"] == {"temperature": 0.5, "num_predict": 300}
    pod = LLMClient("openai", "http://x", "m", api_key="k")
    path, body = pod._payload("sys", "usr", 0.5, 800)
    assert path == "/v1/chat/completions"
    assert body["max_tokens"] == 800
    assert pod.headers["Authorization"] == "Bearer k"

def test_ollama_reachable(monkeypatch):
    get = Mock(return_value=Mock(status_code=200))
    monkeypatch.setattr(llm_module.requests, "get", get)
    assert ollama_reachable("http://127.0.0.1:11434/") is True
    assert get.call_args.args[0] == "http://127.0.0.1:11434/api/tags"

    get.side_effect = requests.ConnectionError("refused")
    assert ollama_reachable("http://127.0.0.1:11434") is False
