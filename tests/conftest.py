"""Shared fixtures for tests."""
import json

import httpx
import pytest


SAMPLE_PROMPTS = [
    {
        "id": "p1",
        "title": "React Component Creator",
        "description": "Generate accessible UI components",
        "content": "Create a reusable React component for a modern, accessible dropdown menu. Include TypeScript types and keyboard navigation support.",
        "category": "cat3",
        "tags": ["react", "typescript"],
        "author": "CodeCrafter",
        "created_at": "2025-01-25T10:00:00+00:00",
        "updated_at": "2025-01-25T10:00:00+00:00",
    },
    {
        "id": "p2",
        "title": "Marketing Campaign Analyzer",
        "description": "Measure campaign effectiveness",
        "content": "Analyze a digital marketing campaign. Consider conversion rates, acquisition cost and ROI.",
        "category": "cat4",
        "tags": ["marketing"],
        "author": "MarketingPro",
        "created_at": "2025-01-30T09:00:00+00:00",
        "updated_at": "2025-01-30T09:00:00+00:00",
    },
    {
        "id": "p3",
        "title": "Creative Story Generator",
        "description": "Short fiction with a twist",
        "content": "Write a short story about a character who can talk to plants. Include dialogue and a surprising twist.",
        "category": "cat1",
        "tags": ["creative", "fiction", "dialogue"],
        "author": "StoryMaster",
        "created_at": "2025-01-15T08:00:00+00:00",
        "updated_at": "2025-01-15T08:00:00+00:00",
    },
    {
        "id": "p4",
        "title": "Character Development Workshop",
        "description": "Build a fantasy protagonist",
        "content": "Create a detailed character profile for a fantasy novel protagonist.",
        "category": "cat1",
        "tags": ["character", "fantasy"],
        "author": "WorldBuilder",
        "created_at": "2025-01-20T12:00:00+00:00",
        "updated_at": "2025-02-02T12:00:00+00:00",
    },
    {
        "id": "p5",
        "title": "Dialogue Writing Exercise",
        "description": "Two strangers meet",
        "content": "Write a conversation between two characters with different perspectives on life.",
        "category": "cat1",
        "tags": ["dialogue", "character", "writing"],
        "author": "DialogueMaster",
        "created_at": "2025-02-08T15:30:00+00:00",
    },
]


@pytest.fixture
def sample_prompts():
    """Return a fresh copy of the sample prompts."""
    return json.loads(json.dumps(SAMPLE_PROMPTS))


@pytest.fixture
def data_dir(tmp_path):
    """Return an empty data directory for a PromptStore."""
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def seeded_data_dir(data_dir):
    """Data directory pre-filled with the sample prompts and taxonomy."""
    (data_dir / "prompts.json").write_text(json.dumps(SAMPLE_PROMPTS, indent=4))
    (data_dir / "categories.json").write_text(json.dumps([
        {"id": "cat1", "name": "Creative Writing"},
        {"id": "cat3", "name": "Code Generation"},
        {"id": "cat4", "name": "Business"},
    ]))
    (data_dir / "tags.json").write_text(json.dumps([
        {"id": "react", "name": "React"},
        {"id": "dialogue", "name": "Dialogue"},
    ]))
    return data_dir


@pytest.fixture
def search_log_db_path(tmp_path):
    """Return path for a temporary search log database."""
    return tmp_path / "test_search_log.db"


class FakePromptsApi:
    """In-memory stand-in for the remote prompts endpoint.

    Follows the server's rules: the POST update action needs id, title and
    content, and unknown ids answer 404.
    """

    def __init__(self, prompts):
        self.prompts = {p["id"]: dict(p) for p in prompts}
        self.requests = []

    def __call__(self, request):
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, dict(request.url.params), body))

        if request.method == "GET":
            prompt_id = request.url.params.get("id")
            if prompt_id is None:
                return httpx.Response(200, json={"ok": True, "prompts": list(self.prompts.values())})
            if prompt_id not in self.prompts:
                return httpx.Response(404, json={"ok": False, "error": "Prompt not found"})
            return httpx.Response(200, json={"ok": True, "prompt": self.prompts[prompt_id]})

        if body.get("action") == "update":
            if not body.get("id") or not body.get("title") or not body.get("content"):
                return httpx.Response(400, json={"ok": False, "error": "Missing required fields"})
            prompt = self.prompts.get(body["id"])
            if prompt is None:
                return httpx.Response(404, json={"ok": False, "error": "Prompt not found"})
            prompt["title"] = body["title"].strip()
            prompt["content"] = body["content"].strip()
            for name in ("description", "author"):
                if name in body:
                    prompt[name] = body[name]
            if isinstance(body.get("category"), str) and body["category"].strip():
                prompt["category"] = body["category"].strip()
            if isinstance(body.get("tags"), list):
                prompt["tags"] = body["tags"]
            return httpx.Response(200, json={"ok": True, "prompt": prompt})

        return httpx.Response(400, json={"ok": False, "error": "Unsupported request"})

    @property
    def posts(self):
        return [body for method, _, body in self.requests if method == "POST"]


@pytest.fixture
def prompts_api(sample_prompts):
    """Fake remote prompts endpoint seeded with the sample prompts."""
    return FakePromptsApi(sample_prompts)
