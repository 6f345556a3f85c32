# sitebuilder/core/project_store.py
"""
Project file storage collaborator.

The engine only needs three calls: list, get, put. InMemoryProjectStore is
used by tests and single-process setups; HttpProjectStore talks to the
persistence backend's /api/projects endpoints.
"""
import logging
import threading
import urllib.parse
from typing import Dict, List, Optional, Protocol

import requests

from sitebuilder.models import FileMeta, ProjectFile
from sitebuilder.utils import config

logger = logging.getLogger(__name__)


class ProjectStore(Protocol):
    def list_files(self, project_id: str) -> List[FileMeta]:
        ...

    def get_file(self, project_id: str, path: str) -> Optional[ProjectFile]:
        ...

    def put_file(self, project_id: str, path: str, content: str, language: Optional[str] = None) -> ProjectFile:
        ...


class InMemoryProjectStore:
    def __init__(self, files: Optional[Dict[str, Dict[str, str]]] = None):
        self._lock = threading.Lock()
        self._projects: Dict[str, Dict[str, ProjectFile]] = {}
        for project_id, entries in (files or {}).items():
            for path, content in entries.items():
                self.put_file(project_id, path, content)

    def list_files(self, project_id: str) -> List[FileMeta]:
        with self._lock:
            files = self._projects.get(project_id, {})
            return [FileMeta(path=f.path, language=f.language, size=len(f.content.encode("utf-8")))
                    for f in files.values()]

    def get_file(self, project_id: str, path: str) -> Optional[ProjectFile]:
        with self._lock:
            return self._projects.get(project_id, {}).get(path)

    def put_file(self, project_id: str, path: str, content: str, language: Optional[str] = None) -> ProjectFile:
        f = ProjectFile(path=path, content=content, language=language)
        with self._lock:
            self._projects.setdefault(project_id, {})[path] = f
        return f


class HttpProjectStore:
    def __init__(self, base_url: str = config.BACKEND_API_BASE, timeout: int = config.BACKEND_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _files_url(self, project_id: str) -> str:
        return f"{self.base_url}/api/projects/{urllib.parse.quote(project_id, safe='')}/files"

    def list_files(self, project_id: str) -> List[FileMeta]:
        resp = self.session.get(self._files_url(project_id), timeout=self.timeout)
        resp.raise_for_status()
        data = resp.json()
        items = data.get("files", []) if isinstance(data, dict) else data
        return [FileMeta(path=it.get("path"), language=it.get("language"), size=it.get("size") or 0)
                for it in items or [] if isinstance(it, dict) and it.get("path")]

    def get_file(self, project_id: str, path: str) -> Optional[ProjectFile]:
        resp = self.session.get(self._files_url(project_id), params={"path": path}, timeout=self.timeout)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        data = resp.json()
        item = data.get("file", data) if isinstance(data, dict) else None
        if not item or "content" not in item:
            return None
        return ProjectFile(path=item.get("path", path), content=item.get("content") or "", language=item.get("language"))

    def put_file(self, project_id: str, path: str, content: str, language: Optional[str] = None) -> ProjectFile:
        resp = self.session.put(self._files_url(project_id),
                                json={"path": path, "content": content, "language": language},
                                timeout=self.timeout)
        resp.raise_for_status()
        logger.debug("stored %s (%d chars) in project %s", path, len(content), project_id)
        data = resp.json() if resp.content else {}
        item = data.get("file", data) if isinstance(data, dict) else {}
        return ProjectFile(path=item.get("path", path), content=item.get("content", content),
                           language=item.get("language", language))
