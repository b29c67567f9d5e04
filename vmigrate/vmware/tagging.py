"""vSphere tagging through the vCenter Automation REST API.

pyVmomi does not cover tags, so this talks to ``/api/cis/tagging`` directly:
  POST /api/session                                      → session token
  GET  /api/cis/tagging/category                         → category ids
  POST /api/cis/tagging/tag?action=list-tags-for-category → tag ids
  POST /api/cis/tagging/tag-association/{tag}?action=attach

Requires vCenter 7.0 U2 or later.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

import requests

from vmigrate.errors import MigrationConnectionError, OperationError
from vmigrate.utils.logging import get_logger

logger = get_logger(__name__)


class TaggingAPI:
    """Categories, tags and tag associations on one vCenter."""

    def __init__(self, host: str, insecure: bool = False, timeout: int = 30):
        self.base = f"https://{host}/api"
        self.host = host
        self.timeout = timeout
        self.session = requests.Session()
        self.session.verify = not insecure
        self.session.headers.update({"Content-Type": "application/json"})

    def login(self, username: str, password: str) -> None:
        try:
            resp = self.session.post(f"{self.base}/session", auth=(username, password), timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise MigrationConnectionError("vCenter tagging API", self.host, str(e)) from e
        self.session.headers["vmware-api-session-id"] = resp.json()

    def logout(self) -> None:
        if "vmware-api-session-id" not in self.session.headers:
            return
        try:
            self.session.delete(f"{self.base}/session", timeout=self.timeout)
        finally:
            self.session.headers.pop("vmware-api-session-id", None)
            self.session.close()

    def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            resp = self.session.request(method, f"{self.base}{path}", timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise OperationError(f"Tagging API {method} {path} failed: {e}") from e
        if not resp.ok:
            logger.error(f"API error {resp.status_code}: {resp.text[:500]}")
            raise OperationError(f"Tagging API {method} {path} returned {resp.status_code}")
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    # ── Lookups ──────────────────────────────────────────────────

    def find_category(self, name: str) -> Optional[str]:
        for category_id in self._request("GET", "/cis/tagging/category") or []:
            category = self._request("GET", f"/cis/tagging/category/{category_id}")
            if category and category.get("name") == name:
                return category_id
        return None

    def find_tag(self, category_id: str, name: str) -> Optional[str]:
        tag_ids = self._request(
            "POST",
            "/cis/tagging/tag",
            params={"action": "list-tags-for-category"},
            json={"category_id": category_id},
        ) or []
        for tag_id in tag_ids:
            tag = self._request("GET", f"/cis/tagging/tag/{tag_id}")
            if tag and tag.get("name") == name:
                return tag_id
        return None

    # ── Changes ──────────────────────────────────────────────────

    def create_category(self, name: str) -> str:
        logger.info(f"Creating tag category '{name}'")
        return self._request("POST", "/cis/tagging/category", json={
            "name": name,
            "description": "Created by vmigrate",
            "cardinality": "SINGLE",
            "associable_types": ["VirtualMachine"],
        })

    def create_tag(self, category_id: str, name: str) -> str:
        logger.info(f"Creating tag '{name}'")
        return self._request("POST", "/cis/tagging/tag", json={
            "name": name,
            "description": "Created by vmigrate",
            "category_id": category_id,
        })

    def attach(self, tag_id: str, vm_moref: str) -> None:
        self._request(
            "POST",
            f"/cis/tagging/tag-association/{tag_id}",
            params={"action": "attach"},
            json={"object_id": {"id": vm_moref, "type": "VirtualMachine"}},
        )


def _call(action: str, fn: Callable, *args):
    return fn(*args)


def ensure_tag(api, category_name: str, tag_name: str, perform: Callable = _call) -> Optional[str]:
    """Get-or-create a category and a tag inside it; returns the tag id.

    Calling this repeatedly with the same names creates nothing new. The
    creates go through ``perform(action, fn, *args)``; when it only logs
    them (a dry run) the result is None.
    """
    category_id = api.find_category(category_name)
    if category_id is None:
        category_id = perform(f"create tag category '{category_name}'", api.create_category, category_name)
    tag_id = api.find_tag(category_id, tag_name) if category_id is not None else None
    if tag_id is None:
        tag_id = perform(f"create tag '{tag_name}'", api.create_tag, category_id, tag_name)
    return tag_id
