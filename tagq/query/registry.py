"""
Saved queries.

A YAML file maps names to query text, either directly or with a
description:

    open-tasks: find task where not Status = Done order by -created

    overdue:
      description: "Tasks past their due date"
      query: find task where Due < today and not Status = Done order by Due
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml

from ..errors import TagqError
from .ast import Query
from .parser import parse_query


class RegistryError(TagqError):
    """Invalid saved query definitions."""
    pass


@dataclass
class SavedQuery:
    name: str
    text: str
    query: Query
    description: Optional[str] = None
    source: Optional[Path] = None


def parse_queries(data, source: Optional[Path] = None) -> Dict[str, SavedQuery]:
    """Validate and parse the mapping loaded from a queries file."""
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise RegistryError(f"Queries file must contain a mapping, got {type(data).__name__}")

    queries = {}
    for name, definition in data.items():
        description = None
        if isinstance(definition, dict):
            if 'query' not in definition:
                raise RegistryError(f"Saved query '{name}' has no 'query' key")
            text = definition['query']
            description = definition.get('description')
        else:
            text = definition
        if not isinstance(text, str):
            raise RegistryError(f"Saved query '{name}' must be query text")
        queries[str(name)] = SavedQuery(
            name=str(name),
            text=text,
            query=parse_query(text),
            description=description,
            source=source,
        )
    return queries


class QueryRegistry:
    """Registry of named queries."""

    def __init__(self):
        self._queries: Dict[str, SavedQuery] = {}

    def register(self, saved: SavedQuery) -> None:
        self._queries[saved.name] = saved

    def get(self, name: str) -> SavedQuery:
        if name not in self._queries:
            raise KeyError(f"Unknown query: {name}")
        return self._queries[name]

    def has(self, name: str) -> bool:
        return name in self._queries

    def list(self) -> List[str]:
        return sorted(self._queries)

    def load_file(self, path: Union[str, Path]) -> int:
        """
        Load queries from a YAML file.

        Returns number of queries loaded.
        """
        path = Path(path)
        if not path.exists():
            raise RegistryError(f"Queries file not found: {path}")
        with open(path) as f:
            data = yaml.safe_load(f)
        return self._load(parse_queries(data, source=path))

    def load_string(self, yaml_string: str) -> int:
        """Load queries from YAML text. Returns number of queries loaded."""
        return self._load(parse_queries(yaml.safe_load(yaml_string)))

    def _load(self, queries: Dict[str, SavedQuery]) -> int:
        for saved in queries.values():
            self.register(saved)
        return len(queries)

    def save(self, path: Union[str, Path]) -> None:
        data = {}
        for name in self.list():
            saved = self._queries[name]
            if saved.description:
                data[name] = {'description': saved.description, 'query': saved.text}
            else:
                data[name] = saved.text
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.safe_dump(data, f, sort_keys=True, allow_unicode=True)
