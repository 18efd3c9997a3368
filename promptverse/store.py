"""Flat-file JSON store for prompts, categories, tags, comments and results."""
import json
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional


COLLECTIONS = ("prompts", "categories", "tags", "comments", "results")

DEFAULT_DESCRIPTION = "No description provided"
DEFAULT_AUTHOR = "Unknown"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def _clean(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def _is_filled(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


class PromptStore:
    """One JSON file per collection, rewritten atomically on every change.

    Single writer: the store does not lock files, it only guarantees a
    reader never sees a half-written file.
    """

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)

    def path_for(self, collection: str) -> Path:
        return self.data_dir / f"{collection}.json"

    # ------------------------------------------------------------------
    # File I/O
    # ------------------------------------------------------------------

    def _read(self, collection: str) -> List[Dict[str, Any]]:
        """Load a collection. Missing or malformed files read as empty."""
        path = self.path_for(collection)
        if not path.exists():
            return []

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            print(f"[PromptStore] Could not read {path}: {e}", file=sys.stderr)
            return []

        if not isinstance(data, list):
            print(f"[PromptStore] Ignoring non-list data in {path}", file=sys.stderr)
            return []

        return [entry for entry in data if isinstance(entry, dict)]

    def _write(self, collection: str, data: List[Dict[str, Any]]) -> None:
        """Write a collection atomically (temp file, then rename)."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(collection)
        temp_path = path.with_suffix(".tmp")

        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=4, ensure_ascii=False)

        temp_path.replace(path)

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------

    def list_prompts(self, with_relations: bool = True) -> List[Dict[str, Any]]:
        """List all prompts.

        Args:
            with_relations: Attach each prompt's 'comments' and 'results'

        Returns:
            List of prompt dicts in stored order
        """
        prompts = self._read("prompts")
        if not with_relations:
            return prompts

        comments = self._read("comments")
        results = self._read("results")
        return [self._attach_relations(p, comments, results) for p in prompts]

    @staticmethod
    def _attach_relations(prompt, comments, results) -> Dict[str, Any]:
        prompt_id = prompt.get("id")
        prompt = dict(prompt)
        prompt["comments"] = [c for c in comments if prompt_id is not None and c.get("prompt_id") == prompt_id]
        prompt["results"] = [r for r in results if prompt_id is not None and r.get("prompt_id") == prompt_id]
        return prompt

    def get_prompt(self, prompt_id: str, with_relations: bool = True) -> Optional[Dict[str, Any]]:
        """Get a prompt by ID, or None if not found."""
        for prompt in self._read("prompts"):
            if prompt.get("id") == prompt_id:
                if with_relations:
                    return self._attach_relations(prompt, self._read("comments"), self._read("results"))
                return prompt
        return None

    def create_prompt(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a prompt.

        Args:
            data: Must contain non-empty 'title', 'content' and 'category'
                strings and a 'tags' list. 'description' and 'author' are
                optional.

        Returns:
            The stored prompt

        Raises:
            ValueError: If a required field is missing or invalid
        """
        if not isinstance(data, dict):
            raise ValueError("Prompt data must be an object")
        missing = [name for name in ("title", "content", "category") if not _is_filled(data.get(name))]
        if missing or not isinstance(data.get("tags"), list):
            raise ValueError("Missing or invalid required fields (title, content, category, tags)")

        description = data.get("description")
        author = data.get("author")
        now = _now()
        prompt = {
            "id": _generate_id("prompt"),
            "title": data["title"].strip(),
            "content": data["content"].strip(),
            "description": description.strip() if isinstance(description, str) else DEFAULT_DESCRIPTION,
            "category": data["category"].strip(),
            "tags": list(data["tags"]),
            "author": author.strip() if _is_filled(author) else DEFAULT_AUTHOR,
            "created_at": now,
            "updated_at": now,
        }

        prompts = self._read("prompts")
        prompts.append(prompt)
        self._write("prompts", prompts)

        return prompt

    def update_prompt(self, prompt_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Update a prompt in place.

        Blank categories and non-list tags are ignored.

        Returns:
            The updated prompt, or None if not found
        """
        prompts = self._read("prompts")

        for prompt in prompts:
            if prompt.get("id") != prompt_id:
                continue

            for name in ("title", "content", "description", "author"):
                if name in changes and isinstance(changes[name], str):
                    prompt[name] = changes[name].strip()
            if _is_filled(changes.get("category")):
                prompt["category"] = changes["category"].strip()
            if isinstance(changes.get("tags"), list):
                prompt["tags"] = list(changes["tags"])
            prompt.setdefault("author", DEFAULT_AUTHOR)
            prompt["updated_at"] = _now()

            self._write("prompts", prompts)
            return prompt

        return None

    def delete_prompt(self, prompt_id: str) -> bool:
        """Delete a prompt and its comments and results.

        Returns:
            True if deleted, False if not found
        """
        prompts = self._read("prompts")
        remaining = [p for p in prompts if p.get("id") != prompt_id]
        if len(remaining) == len(prompts):
            return False

        self._write("prompts", remaining)

        for collection in ("comments", "results"):
            if self.path_for(collection).exists():
                entries = self._read(collection)
                kept = [e for e in entries if e.get("prompt_id") != prompt_id]
                if len(kept) != len(entries):
                    self._write(collection, kept)

        return True

    def import_prompts(self, items: List[Any]) -> Dict[str, Any]:
        """Append prompts from an export, assigning fresh IDs.

        Items without 'title' and 'content' are skipped and reported.

        Returns:
            Dict with 'imported_count', 'skipped_count' and 'errors'
        """
        prompts = self._read("prompts")
        imported = []
        errors = []

        for index, item in enumerate(items):
            if not isinstance(item, dict) or "title" not in item or "content" not in item:
                errors.append({"index": index, "error": "Missing required fields: title and content"})
                continue

            now = _now()
            description = item.get("description")
            tags = item.get("tags")
            imported.append({
                "id": _generate_id("imp"),
                "title": _clean(item["title"]),
                "content": _clean(item["content"]),
                "description": description.strip() if isinstance(description, str) else "",
                "category": item.get("category", ""),
                "tags": list(tags) if isinstance(tags, list) else [],
                "author": item.get("author", "import"),
                "created_at": now,
                "updated_at": now,
            })

        if imported:
            self._write("prompts", prompts + imported)

        return {
            "imported_count": len(imported),
            "skipped_count": len(errors),
            "errors": errors,
        }

    # ------------------------------------------------------------------
    # Categories and tags
    # ------------------------------------------------------------------

    def _add_named(self, collection: str, prefix: str, name: Any) -> Dict[str, Any]:
        if not _is_filled(name):
            raise ValueError("Name must be a non-empty string")
        name = name.strip()

        entries = self._read(collection)
        if any(str(e.get("name", "")).lower() == name.lower() for e in entries):
            raise ValueError(f"'{name}' already exists")

        now = _now()
        entry = {"id": _generate_id(prefix), "name": name, "created_at": now, "updated_at": now}
        entries.append(entry)
        self._write(collection, entries)
        return entry

    def _rename_named(self, collection: str, entry_id: str, name: Any) -> Optional[Dict[str, Any]]:
        if not _is_filled(name):
            raise ValueError("Name must be a non-empty string")

        entries = self._read(collection)
        for entry in entries:
            if entry.get("id") == entry_id:
                entry["name"] = name.strip()
                entry["updated_at"] = _now()
                self._write(collection, entries)
                return entry
        return None

    def _delete_by_id(self, collection: str, entry_id: str) -> bool:
        entries = self._read(collection)
        remaining = [e for e in entries if e.get("id") != entry_id]
        if len(remaining) == len(entries):
            return False
        self._write(collection, remaining)
        return True

    def list_categories(self) -> List[Dict[str, Any]]:
        return self._read("categories")

    def add_category(self, name: str) -> Dict[str, Any]:
        """Create a category. Raises ValueError on blank or duplicate names."""
        return self._add_named("categories", "cat", name)

    def update_category(self, category_id: str, name: str) -> Optional[Dict[str, Any]]:
        return self._rename_named("categories", category_id, name)

    def delete_category(self, category_id: str) -> bool:
        return self._delete_by_id("categories", category_id)

    def list_tags(self) -> List[Dict[str, Any]]:
        return self._read("tags")

    def add_tag(self, name: str) -> Dict[str, Any]:
        """Create a tag. Tag names may not contain commas."""
        if isinstance(name, str) and "," in name:
            raise ValueError("Tag names cannot contain commas.")
        return self._add_named("tags", "tag", name)

    def update_tag(self, tag_id: str, name: str) -> Optional[Dict[str, Any]]:
        if isinstance(name, str) and "," in name:
            raise ValueError("Tag names cannot contain commas.")
        return self._rename_named("tags", tag_id, name)

    def delete_tag(self, tag_id: str) -> bool:
        return self._delete_by_id("tags", tag_id)

    # ------------------------------------------------------------------
    # Comments and results
    # ------------------------------------------------------------------

    def _list_for_prompt(self, collection: str, prompt_id: str) -> List[Dict[str, Any]]:
        return [e for e in self._read(collection) if e.get("prompt_id") == prompt_id]

    def _add_for_prompt(self, collection: str, prefix: str, prompt_id: str,
                        content: Any, author: Optional[str]) -> Dict[str, Any]:
        if not _is_filled(prompt_id) or not _is_filled(content):
            raise ValueError("Missing required fields (prompt_id, content)")

        now = _now()
        entry = {
            "id": _generate_id(prefix),
            "prompt_id": prompt_id,
            "content": content.strip(),
            "author": author.strip() if _is_filled(author) else None,
            "created_at": now,
            "updated_at": now,
        }
        entries = self._read(collection)
        entries.append(entry)
        self._write(collection, entries)
        return entry

    def _update_entry(self, collection: str, entry_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        entries = self._read(collection)
        for entry in entries:
            if entry.get("id") == entry_id:
                for name in ("content", "author"):
                    if isinstance(changes.get(name), str):
                        entry[name] = changes[name].strip()
                entry["updated_at"] = _now()
                self._write(collection, entries)
                return entry
        return None

    def list_comments(self, prompt_id: str) -> List[Dict[str, Any]]:
        return self._list_for_prompt("comments", prompt_id)

    def add_comment(self, prompt_id: str, content: str, author: Optional[str] = None) -> Dict[str, Any]:
        return self._add_for_prompt("comments", "comment", prompt_id, content, author)

    def update_comment(self, comment_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._update_entry("comments", comment_id, changes)

    def delete_comment(self, comment_id: str) -> bool:
        return self._delete_by_id("comments", comment_id)

    def list_results(self, prompt_id: str) -> List[Dict[str, Any]]:
        return self._list_for_prompt("results", prompt_id)

    def add_result(self, prompt_id: str, content: str, author: Optional[str] = None) -> Dict[str, Any]:
        return self._add_for_prompt("results", "result", prompt_id, content, author)

    def update_result(self, result_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._update_entry("results", result_id, changes)

    def delete_result(self, result_id: str) -> bool:
        return self._delete_by_id("results", result_id)
